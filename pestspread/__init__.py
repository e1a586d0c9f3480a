"""pestspread: gridded simulation of pest and pathogen spread.

A landscape is a raster of cells, each holding susceptible and infected
host counts under a fixed carrying capacity. Every simulated day may run
dispersal-and-infection, mortality, network movement, overpopulation
correction and removal (treatments), each gated by its own schedule.

Modules:
  - grid:          bounds-checked 2-D count/rate grids over numpy arrays
  - dates:         calendar dates and seasons
  - scheduling:    per-day boolean schedules from frequency rules
  - distributions: dispersal distance distributions
  - kernels:       dispersal kernels (radial, deterministic, neighbor, network)
  - hosts:         per-cell host population state
  - simulation:    the spread engine (one process per method)
  - treatments, network, spread_rate, quarantine: collaborators and queries
  - model:         the day-iterating orchestrator
"""

__version__ = "0.1.0"
