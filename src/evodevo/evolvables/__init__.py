"""
Candidate bodies. `SoftBody` is the interface the simulator and the ranker
rely on; morphology encodings such as `NNRobot` subclass it.
"""
