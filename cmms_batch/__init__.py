"""
cmms_batch -- preventive maintenance work order generation.

Wires the pure schedule domain, the schedule and work order collaborators,
and the generator.  Entry point: ``PMGenerationOrchestrator``.
"""
