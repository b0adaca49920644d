"""
Write-side services.

Import concrete services from their modules; this package deliberately
re-exports nothing so that models can import the sequence counter without
pulling in the whole service graph.
"""
