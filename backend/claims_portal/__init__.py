"""InsureVis claims review portal service."""
