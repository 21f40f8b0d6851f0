import logging
import os
import tempfile
from typing import Any, Optional

from localcanary.state import Decoder, Encoder
from localcanary.state.pickle import PickleDecoder, PickleEncoder

LOG = logging.getLogger(__name__)


class FileStateBackend:
    """
    Stores the routing state as a single file. Writes go to a temporary file in the same directory first and are
    then renamed into place, so a reader never sees a partially written state. Errors are not handled here, they
    propagate to the caller.
    """

    path: str
    encoder: Encoder
    decoder: Decoder

    def __init__(self, path: str, encoder: Encoder = None, decoder: Decoder = None):
        if not path:
            raise ValueError("path must be set")
        self.path = path
        self.encoder = encoder or PickleEncoder()
        self.decoder = decoder or PickleDecoder()

    def save(self, state: Any) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".routing-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fp:
                self.encoder.encode(state, fp)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        LOG.debug("Saved routing state to %s", self.path)

    def load(self) -> Optional[Any]:
        if not os.path.exists(self.path):
            return None
        with open(self.path, "rb") as fp:
            state = self.decoder.decode(fp)
        LOG.debug("Loaded routing state from %s", self.path)
        return state

    def __repr__(self):
        return f"FileStateBackend({self.path!r})"
