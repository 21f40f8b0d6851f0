"""Core concepts of the persistence API."""

import io
from typing import IO, Any


class StateLifecycleHook:
    """
    There are three well-known state manipulation operations for a routing service:

    - reset: the state within the service is reset, stores cleared
    - save: the state of the service is extracted and handed to the storage backend
    - load: the state is read from the storage backend and injected into the service
    """

    def on_before_state_reset(self):
        """Hook triggered before the service's state containers are reset/cleared."""
        pass

    def on_after_state_reset(self):
        """Hook triggered after the service's state containers have been reset/cleared."""
        pass

    def on_before_state_save(self):
        """Hook triggered before the service's state containers are saved."""
        pass

    def on_after_state_save(self):
        """Hook triggered after the service's state containers have been saved."""
        pass

    def on_before_state_load(self):
        """Hook triggered before a previously serialized state is loaded into the service's state containers."""
        pass

    def on_after_state_load(self):
        """Hook triggered after a previously serialized state has been loaded into the service's state containers."""
        pass


class Encoder:
    def encodes(self, obj: Any) -> bytes:
        """
        Encode an object into bytes.

        :param obj: the object to encode
        :return: the encoded object
        """
        b = io.BytesIO()
        self.encode(obj, b)
        return b.getvalue()

    def encode(self, obj: Any, file: IO[bytes]):
        """
        Encode an object into bytes.

        :param obj: the object to encode
        :param file: the file to write the encoded data into
        """
        raise NotImplementedError


class Decoder:
    def decodes(self, data: bytes) -> Any:
        """
        Decode a previously encoded object.

        :param data: the encoded object to decode
        :return: the decoded object
        """
        return self.decode(io.BytesIO(data))

    def decode(self, file: IO[bytes]) -> Any:
        """
        Decode a previously encoded object.

        :param file: the io object containing the object to decode
        :return: the decoded object
        """
        raise NotImplementedError
