"""
Isolated task execution for media processing.

ffmpeg work runs in a child OS process so that a codec crash or hang cannot
take the orchestrator down. A job is a module-level function taking a
JSON-like payload dict and returning a result dict; the child sends the
result back over a pipe and nothing else is shared.

Result payloads always carry ``success``; failures carry ``error``.
"""

import asyncio
import logging
import multiprocessing
from multiprocessing.connection import Connection
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Job = Callable[[dict], dict]


def _child_main(job: Job, payload: dict, conn: Connection):
    try:
        result = job(payload)
    except Exception as e:
        result = {"success": False, "error": f"{type(e).__name__}: {e}"}
    try:
        conn.send(result)
    finally:
        conn.close()


class IsolatedTaskRunner:
    """
    Run one job per child process.

    ``timeout`` of None means the job is allowed to run to completion.
    """

    def __init__(self, start_method: str = "spawn"):
        self._ctx = multiprocessing.get_context(start_method)

    async def run(self, job: Job, payload: dict, timeout: Optional[float] = None) -> dict:
        return await asyncio.to_thread(self._run_blocking, job, payload, timeout)

    def _run_blocking(self, job: Job, payload: dict, timeout: Optional[float]) -> dict:
        parent_conn, child_conn = self._ctx.Pipe(duplex=False)
        proc = self._ctx.Process(
            target=_child_main,
            args=(job, payload, child_conn),
            daemon=True,
        )
        proc.start()
        child_conn.close()
        name = getattr(job, "__name__", "job")

        try:
            if parent_conn.poll(timeout):
                try:
                    return parent_conn.recv()
                except EOFError:
                    pass
            else:
                logger.error(f"Isolated {name} exceeded {timeout}s, terminating pid={proc.pid}")
                proc.terminate()
                proc.join(5)
                return {"success": False, "error": f"{name} timed out after {timeout}s"}

            proc.join(5)
            return {
                "success": False,
                "error": f"{name} worker exited with code {proc.exitcode} without a result",
            }
        finally:
            parent_conn.close()
            if proc.is_alive():
                proc.join(5)
            if proc.is_alive():
                proc.kill()
