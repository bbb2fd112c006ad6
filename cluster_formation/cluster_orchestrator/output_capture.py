"""
Output Capture - Routes a node's launch logging into its output buffer
"""
import io
import logging
from contextlib import contextmanager
from typing import Iterator

from ..models import NodeInfo


class BufferHandler(logging.Handler):
    """Writes formatted records as UTF-8 lines into a byte buffer"""

    def __init__(self, buffer: io.BytesIO):
        super().__init__(level=logging.DEBUG)
        self.buffer = buffer
        self.setFormatter(logging.Formatter('%(levelname)-5s | %(message)s'))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.buffer.write((self.format(record) + '\n').encode('utf-8'))
        except Exception:
            self.handleError(record)


def node_logger(node: NodeInfo) -> logging.Logger:
    """Per-node logger; nodes of concurrently started clusters never share capture state"""
    return logging.getLogger(f"{__package__}.{node.cluster_name}.{node.node_id}")


@contextmanager
def capture_output(node: NodeInfo, quiet: bool) -> Iterator[logging.Logger]:
    """
    Attach the node's output buffer to its logger for the duration of the block.

    With quiet=True the records only reach the buffer; otherwise they are also
    propagated to the normal handlers. The handler is always detached on exit.
    """
    log = node_logger(node)
    handler = BufferHandler(node.output_buffer)
    previous_propagate = log.propagate

    log.addHandler(handler)
    log.propagate = not quiet
    try:
        yield log
    finally:
        log.removeHandler(handler)
        log.propagate = previous_propagate
