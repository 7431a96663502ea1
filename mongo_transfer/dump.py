"""
Export through mongodump

Each planned job is one mongodump invocation writing a gzip archive. Jobs of a
batch run one after another because they share the output target.
"""

from pymongo import MongoClient
from rich.console import Console

from .constants import MONGODUMP
from .control import CancellationToken, TransferRegistry
from .events import EventEmitter, Phase, ProgressTracker
from .exceptions import TransferCancelled
from .formatting import format_namespace
from .planner import ExportSelection, JobBatch, TransferJob, plan_batch, plan_jobs
from .settings import TransferConfig
from .tools import DUMP_DONE, ProcessRunner, find_tool, scan_line
from .uri import build_tool_uri, tool_uri_for_job

console = Console(stderr=True)


def build_dump_args(uri: str, archive_path: str, job: TransferJob) -> list[str]:
    """mongodump arguments for one job (tool path excluded)"""
    args = [
        f"--uri={tool_uri_for_job(uri, job.database)}",
        f"--archive={archive_path}",
        '--gzip',
        '--numParallelCollections=1',
    ]
    if job.database:
        args.append(f"--db={job.database}")
    if job.collection:
        args.append(f"--collection={job.collection}")
    for excluded in job.exclude_collections:
        args.append(f"--excludeCollection={excluded}")
    return args


class DumpExporter:
    """Runs a planned batch of mongodump jobs"""

    def __init__(
        self,
        mongo_uri: str,
        registry: TransferRegistry,
        emitter: EventEmitter,
        client: MongoClient | None = None,
        config: TransferConfig | None = None,
        runner: ProcessRunner | None = None,
    ):
        self.mongo_uri = mongo_uri
        self.registry = registry
        self.emitter = emitter
        self.client = client
        self.config = config or TransferConfig()
        self.runner = runner or ProcessRunner(self.config.stderr_buffer_lines)

    def export(self, selection: ExportSelection, output_path: str, job_id: str | None = None) -> dict:
        """
        Dump the selection to output_path.

        Returns the completion payload. Raises ToolNotFoundError before
        anything is written, TransferCancelled after the batch output was
        removed, and ToolFailedError with masked diagnostics.
        """
        tool = find_tool(MONGODUMP)
        jobs = plan_jobs(selection)
        batch = plan_batch(jobs, output_path)
        uri = build_tool_uri(self.mongo_uri, self.client)

        with self.registry.track('export', job_id) as token:
            tracker = ProgressTracker(self.emitter, 'export', token.job_id, batch_total=len(jobs))
            batch.prepare()
            try:
                dumped = self._run_batch(tool, uri, batch, token, tracker)
            except TransferCancelled:
                batch.cleanup()
                tracker.cancelled()
                raise
            except BaseException:
                batch.cleanup()
                raise

            payload = {
                'filePath': batch.output_path,
                'jobs': len(jobs),
                'collections': len(dumped),
                'records': sum(dumped.values()),
            }
            tracker.complete(**payload)
            console.print(f"[dim]mongodump wrote {batch.output_path}[/dim]")
            return {'jobId': token.job_id, **payload}

    def _run_batch(
        self,
        tool: str,
        uri: str,
        batch: JobBatch,
        token: CancellationToken,
        tracker: ProgressTracker,
    ) -> dict[str, int]:
        """Run every job in order; returns namespace -> dumped record count"""
        dumped: dict[str, int] = {}

        for index, job in enumerate(batch.jobs, start=1):
            # Job boundary
            if not self.registry.checkpoint(token):
                raise TransferCancelled(token.job_id, kind='export')

            archive_path = batch.job_output_path(job)
            tracker.progress(
                Phase.EXPORTING,
                database=job.database,
                collection=job.collection,
                current=len(dumped),
                batch_index=index,
                processed_records=sum(dumped.values()),
            )
            console.print(f"[dim]Dumping {format_namespace(job.database, job.collection)}...[/dim]")

            def on_line(line: str, index=index):
                for name, match in scan_line(line):
                    if name != DUMP_DONE:
                        continue
                    database, collection, count = match.group(1), match.group(2), int(match.group(3))
                    dumped[f"{database}.{collection}"] = count
                    tracker.progress(
                        Phase.EXPORTING,
                        database=database,
                        collection=collection,
                        current=len(dumped),
                        batch_index=index,
                        processed_records=sum(dumped.values()),
                    )

            run = self.runner.run([tool, *build_dump_args(uri, archive_path, job)], token, on_line)
            run.raise_for_status(MONGODUMP, token, kind='export')
            if token.cancelled:
                raise TransferCancelled(token.job_id, kind='export')

        return dumped
