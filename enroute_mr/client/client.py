#!/usr/bin/env python3
"""
enroute-mr command line client
Runs a job locally or against workers, starts a worker, and previews results
"""

import argparse
import logging
import os
import sys

from enroute_mr.client.results import load_results, preview
from enroute_mr.common.config import BACKENDS, BackendConfig
from enroute_mr.common.errors import EnrouteError
from enroute_mr.coordinator.executor import run
from enroute_mr.worker.function_loader import DEFAULT_JOB, FunctionLoader
from enroute_mr.worker.worker_server import serve


def build_config(args) -> BackendConfig:
    """Environment settings overridden by command line flags, validated once merged"""
    workers = tuple(w.strip() for w in args.workers.split(',') if w.strip()) if args.workers else None
    return BackendConfig.from_env(
        backend=args.backend,
        workers=workers,
        num_reduce_tasks=args.num_reduce_tasks,
        num_map_tasks=args.num_map_tasks,
        batch_size=args.batch_size,
        rpc_timeout=args.rpc_timeout,
    )


def run_job(args):
    """Run a job and print a preview of its results"""
    try:
        config = build_config(args)
        loader = FunctionLoader(args.job)
        handle = run(
            args.input,
            args.output,
            mapper=loader.get_mapper(),
            reducer=loader.get_reducer(),
            input_format=loader.get_input_format(),
            output_format=loader.get_output_format(),
            backend_config=config,
            job=args.job,
        )
    except EnrouteError as e:
        print(f"Error: {e}")
        return 1
    except (ImportError, AttributeError, TypeError, FileNotFoundError) as e:
        print(f"Error loading job {args.job}: {e}")
        return 1

    metrics = handle.metrics
    print(f"✓ Job {handle.job_id} completed on {handle.backend} backend")
    print(f"  Output: {handle.output_path} ({len(handle.output_files)} part files)")
    print(f"  Lines read: {metrics.lines_read}, skipped: {metrics.lines_skipped}, "
          f"filtered: {metrics.records_filtered}, groups: {metrics.keys_reduced}")
    print(f"  Time: {metrics.total_time_seconds:.2f}s")

    if args.metrics_file:
        metrics.save_to_file(args.metrics_file)
        print(f"  Metrics written to {args.metrics_file}")

    if args.preview > 0:
        print()
        print(preview(handle.to_dataframe(), args.preview))
    return 0


def show_results(args):
    """Print the first rows of a finished job's output"""
    try:
        df = load_results(args.output)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return 1

    print(f"{len(df)} rows in {args.output}")
    print(preview(df, args.rows))
    return 0


def start_worker(args):
    """Start a worker server and block"""
    scratch_dir = args.scratch_dir or os.environ.get('ENROUTE_SCRATCH_DIR') or None
    serve(port=args.port, scratch_dir=scratch_dir, max_workers=args.max_tasks,
          worker_id=args.worker_id)
    return 0


def main(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description='Average enroute times by year and market with MapReduce',
        epilog='Example: %(prog)s run --input data/local/airline --output out/airline/out'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Log debug messages')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # run command
    run_parser = subparsers.add_parser(
        'run',
        help='Run a job',
        description='Run a MapReduce job on the local or distributed backend'
    )
    run_parser.add_argument('--input', required=True, help='Input file or directory')
    run_parser.add_argument('--output', required=True, help='Output directory (must not exist)')
    run_parser.add_argument('--job', default=DEFAULT_JOB,
                            help=f'Job module path or Python file (default: {DEFAULT_JOB})')
    run_parser.add_argument('--backend', choices=BACKENDS, help='Execution backend (default: $ENROUTE_BACKEND or local)')
    run_parser.add_argument('--workers', help='Comma separated worker addresses (host:port)')
    run_parser.add_argument('--num-reduce-tasks', type=int, help='Number of reduce tasks')
    run_parser.add_argument('--num-map-tasks', type=int, help='Map tasks per input file')
    run_parser.add_argument('--batch-size', type=int, help='Records read per batch')
    run_parser.add_argument('--rpc-timeout', type=float, help='Seconds before a worker call fails')
    run_parser.add_argument('--preview', type=int, default=6, help='Rows to print when done (default: 6)')
    run_parser.add_argument('--metrics-file', help='Write job metrics as JSON')
    run_parser.set_defaults(func=run_job)

    # show command
    show_parser = subparsers.add_parser(
        'show',
        help='Preview job output',
        description='Load a finished job output directory and print its first rows'
    )
    show_parser.add_argument('output', help='Output directory')
    show_parser.add_argument('--rows', type=int, default=6, help='Rows to print (default: 6)')
    show_parser.set_defaults(func=show_results)

    # worker command
    worker_parser = subparsers.add_parser(
        'worker',
        help='Start a worker',
        description='Serve map and reduce tasks for the distributed backend'
    )
    worker_parser.add_argument('--port', type=int, default=50052, help='Port to listen on (default: 50052)')
    worker_parser.add_argument('--scratch-dir', help='Directory for intermediate files (default: $ENROUTE_SCRATCH_DIR or a temp dir)')
    worker_parser.add_argument('--max-tasks', type=int, default=4, help='Concurrent RPC threads (default: 4)')
    worker_parser.add_argument('--worker-id', help='Worker ID (auto-generated if not provided)')
    worker_parser.set_defaults(func=start_worker)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # If no command specified, print help
    if not hasattr(args, 'func'):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
