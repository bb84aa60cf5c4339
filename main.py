#!/usr/bin/env python3
"""
workqueue - durable background job queue with priorities, delays and retries
"""
import argparse
import asyncio
import json
import os
import sys

from bootstrap.app import Application
from core.exceptions import QueueError


def create_app(env_file=".env"):
    """Create and return a new application instance."""
    return Application(env_file=env_file)

def create_env_file():
    """Create a default .env file if it doesn't exist."""
    if not os.path.exists(".env"):
        with open(".env", "w") as f:
            f.write("""# Database Configuration
DB_CONNECTION=sqlite
DB_DATABASE=workqueue.db
DB_HOST=localhost
DB_PORT=3306
DB_NAME=workqueue
DB_USER=root
DB_PASS=

# Queue Configuration
QUEUE_DEFAULT_PRIORITY=5
QUEUE_DEFAULT_MAX_ATTEMPTS=3
QUEUE_BACKOFF_BASE=60
QUEUE_BACKOFF_CAP=3600

# Worker Configuration
QUEUE_SLEEP=3
QUEUE_TIMEOUT=60
QUEUE_RECLAIM_AFTER=

# Logging Configuration
LOG_LEVEL=INFO
LOG_FORMAT=%(asctime)s - %(name)s - %(levelname)s - %(message)s
LOG_TO_FILE=false
LOG_FILE=logs/workqueue.log
""")
        print("Created default .env file")

def queue_work(queue=None, job_types=None, max_jobs=None, max_time=None,
               sleep=None, timeout=None, reclaim_after=None, batch=False):
    """Start the queue worker to process background jobs."""
    app = create_app()

    async def run_worker():
        """Run the queue worker with proper initialization and cleanup."""
        await app.initialize()

        try:
            worker = app.create_worker(
                queue_name=queue,
                job_types=job_types,
                max_jobs=max_jobs,
                max_time=max_time,
                sleep=sleep,
                timeout=timeout,
                reclaim_after=reclaim_after,
            )
            worker.install_signal_handlers()

            if batch:
                processed = await worker.process_batch(max_jobs or 100)
                print(f"Processed {processed} jobs")
                return

            print(f"Starting queue worker for queue: {queue or 'all queues'}")
            print(f"Sleep when idle: {worker.idle.next_delay()}s")
            print(f"Press Ctrl+C to stop gracefully\n")

            await worker.work()

        finally:
            await app.shutdown()

    asyncio.run(run_worker())

def run_command(command):
    """Run a single queue operation against the configured database and print its result."""
    app = create_app()

    async def run():
        await app.initialize()
        try:
            return await command(app.queue)
        finally:
            await app.shutdown()

    result = asyncio.run(run())
    print(json.dumps(result, indent=2, default=str))
    return result

def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="workqueue - durable background job queue")
    parser.add_argument('--init', action='store_true', help="Create a default .env file")
    parser.add_argument('--queue-work', action='store_true', help="Start queue worker to process background jobs")
    parser.add_argument('--batch', action='store_true', help="Process up to --max-jobs jobs then exit")
    parser.add_argument('--queue', type=str, help="The queue to process or enqueue to (default: all / default)")
    parser.add_argument('--job-type', action='append', dest='job_types', help="Only process this job type (repeatable)")
    parser.add_argument('--max-jobs', type=int, help="Maximum number of jobs to process")
    parser.add_argument('--max-time', type=int, help="Maximum time in seconds to run")
    parser.add_argument('--sleep', type=float, help="Seconds to sleep when no job is available")
    parser.add_argument('--timeout', type=float, help="Maximum seconds a job can run")
    parser.add_argument('--reclaim-after', type=int, help="Reclaim jobs stuck in processing this many seconds")
    parser.add_argument('--enqueue', type=str, metavar='JOB_TYPE', help="Enqueue a job of this type")
    parser.add_argument('--payload', type=str, default="{}", help="JSON payload for --enqueue")
    parser.add_argument('--priority', type=int, help="Priority for --enqueue (lower runs first)")
    parser.add_argument('--delay', type=int, help="Delay in seconds for --enqueue")
    parser.add_argument('--max-attempts', type=int, help="Attempts allowed for --enqueue")
    parser.add_argument('--cancel', type=int, metavar='JOB_ID', help="Cancel a pending job")
    parser.add_argument('--show', type=int, metavar='JOB_ID', help="Show a job")
    parser.add_argument('--stats', action='store_true', help="Show queue statistics")
    parser.add_argument('--cleanup', type=int, metavar='DAYS', help="Delete finished jobs older than DAYS")
    parser.add_argument('--reclaim', type=int, metavar='SECONDS', help="Reclaim jobs stuck in processing")

    args = parser.parse_args()

    if args.init:
        create_env_file()
        print("workqueue project initialized successfully!")
        return 0

    try:
        if args.queue_work:
            queue_work(
                queue=args.queue,
                job_types=args.job_types,
                max_jobs=args.max_jobs,
                max_time=args.max_time,
                sleep=args.sleep,
                timeout=args.timeout,
                reclaim_after=args.reclaim_after,
                batch=args.batch,
            )
        elif args.enqueue:
            payload = json.loads(args.payload)
            run_command(lambda queue: queue.enqueue(
                args.enqueue,
                payload,
                priority=args.priority,
                queue_name=args.queue or "default",
                delay_seconds=args.delay,
                max_attempts=args.max_attempts,
            ))
        elif args.cancel is not None:
            run_command(lambda queue: queue.cancel_job(args.cancel))
        elif args.show is not None:
            async def show(queue):
                return (await queue.require_job(args.show)).to_dict()
            run_command(show)
        elif args.stats:
            run_command(lambda queue: queue.get_queue_stats(args.queue))
        elif args.cleanup is not None:
            run_command(lambda queue: queue.cleanup(args.cleanup))
        elif args.reclaim is not None:
            run_command(lambda queue: queue.reclaim_stale(args.reclaim))
        else:
            parser.print_help()
    except (QueueError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0

if __name__ == "__main__":
    sys.exit(main())
