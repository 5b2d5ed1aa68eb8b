"""
Dispatch Queue — Where due delayed jobs are handed to ordinary workers.

- The scheduler SUBMITS each due job onto its named queue
- Workers (outside this package) consume those queues and run the jobs
- Supports Redis lists in resque format (production) and an in-memory recorder (dev)
"""
