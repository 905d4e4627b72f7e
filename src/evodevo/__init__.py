"""
Evolutionary design of soft-body robots: topology construction, batched
mass-spring simulation, and Pareto ranking of the evaluated population.
"""
