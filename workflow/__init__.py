# workflow/__init__.py
"""Work-item engine: dependency resolution, status lifecycle, workload metrics."""
