import subprocess
from typing import Any, Dict, Iterator, List, Optional

from asc.config_loader import DEFAULT_CONFIG, as_argv
from asc.errors import SourceError
from asc.log_utils import get_logger

PROVIDERS = ("sgpt", "perplexity")

logger = get_logger("asc.query")


def compose_prompt(message: str, context: str = "", provider: str = "sgpt") -> str:
    # perplexity receives the bare question
    if provider == "sgpt" and context:
        return f"# Context\n{context}\n\n# Question\n{message}"
    return message


def build_query_argv(message: str, provider: str = "sgpt", cfg: Optional[Dict[str, Any]] = None) -> List[str]:
    cfg = cfg or DEFAULT_CONFIG
    if provider not in PROVIDERS:
        raise ValueError(f"unknown provider: {provider}")
    key = "perplexity_command" if provider == "perplexity" else "query_command"
    argv = as_argv(cfg.get(key) or DEFAULT_CONFIG[key])
    return argv + [message]


class QuerySource:
    """Line source backed by a streaming query process.

    Yields each stdout line without its terminator. stderr is inherited so the
    tool's own diagnostics reach the terminal. Iterating a second time is an
    error: the process output cannot be replayed.
    """

    def __init__(self, argv: List[str]) -> None:
        self.argv = argv
        self.returncode: Optional[int] = None
        self._started = False

    def __iter__(self) -> Iterator[str]:
        return self.lines()

    def lines(self) -> Iterator[str]:
        if self._started:
            raise RuntimeError("query source already consumed")
        self._started = True
        logger.debug("starting query process: %s", self.argv[0])
        try:
            proc = subprocess.Popen(
                self.argv,
                stdout=subprocess.PIPE,
                stderr=None,
                text=True,
                bufsize=1,
                shell=False,
            )
        except OSError as exc:
            raise SourceError(f"failed to start {self.argv[0]}: {exc}") from exc
        count = 0
        try:
            try:
                for line in proc.stdout:
                    yield line.rstrip("\r\n")
                    count += 1
            except (OSError, UnicodeDecodeError) as exc:
                proc.kill()
                raise SourceError(f"error reading {self.argv[0]} output: {exc}", fragment_index=count) from exc
            self.returncode = proc.wait()
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            if proc.stdout:
                proc.stdout.close()
        if self.returncode != 0:
            raise SourceError(
                f"{self.argv[0]} exited with status {self.returncode}",
                returncode=self.returncode,
                fragment_index=count,
            )
