"""
Core of the workqueue job queue: storage, queue manager and worker loop.
"""
