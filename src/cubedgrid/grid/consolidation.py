"""Consolidation module.

This module contains the bookkeeping for gathering distributed patch
data on the root rank: the message envelope and the status object that
tracks which (patch, data type) pairs have arrived.
"""

from dataclasses import dataclass

import numpy as np

from cubedgrid.exceptions import ConfigurationError, ProtocolError
from cubedgrid.primitives.data_types import CONSOLIDATION_DATA_TYPES, DataType

N_DATA_TYPES = len(DataType)


@dataclass
class ConsolidationMessage:
    """Envelope of one consolidation message.

    Attributes
    ----------
    patch_index : int
        Global index of the patch the data belongs to.
    data_type : DataType
        Kind of data carried.
    data : ndarray
        Flattened patch data.
    """

    patch_index: int
    data_type: DataType
    data: np.ndarray


class ConsolidationStatus:
    """Status of one consolidation round.

    Parameters
    ----------
    grid : Grid
        Grid whose patches are consolidated.
    data_types : sequence of DataType
        Data types requested from every patch.

    Raises
    ------
    ConfigurationError
        If a data type is repeated or cannot be consolidated.
    ProtocolError
        If TRACERS is requested from a model without tracers, or the
        tag space of the grid exceeds the communicator's maximum tag.
    """

    def __init__(self, grid, data_types):
        data_types = [DataType(data_type) for data_type in data_types]

        if len(set(data_types)) != len(data_types):
            raise ConfigurationError("Repeated data type in {}".format(data_types))
        for data_type in data_types:
            if data_type not in CONSOLIDATION_DATA_TYPES:
                raise ConfigurationError(
                    "Invalid DataType {} for consolidation".format(data_type.name)
                )
        if DataType.TRACERS in data_types and grid.model.tracers == 0:
            raise ProtocolError("Tracer consolidation requested with zero tracers")

        self.data_types = data_types
        self.patch_count = grid.patch_count
        self.max_tag = grid.comm.max_tag

        if self.patch_count > 0:
            self.generate_tag(self.patch_count - 1, max(DataType))

        self._received = {
            (patch_index, data_type): False
            for patch_index in range(self.patch_count)
            for data_type in data_types
        }
        self._send_requests = []

    def contains(self, data_type):
        return DataType(data_type) in self.data_types

    def generate_tag(self, patch_index, data_type):
        """Encode a (patch, data type) pair as a message tag.

        Raises
        ------
        ProtocolError
            If the patch index is negative or the tag exceeds the
            communicator's maximum tag.
        """
        if patch_index < 0:
            raise ProtocolError("Patch index {} out of range".format(patch_index))

        tag = patch_index * N_DATA_TYPES + int(DataType(data_type))
        if tag > self.max_tag:
            raise ProtocolError(
                "Tag {} for patch {} exceeds maximum tag {}".format(tag, patch_index, self.max_tag)
            )
        return tag

    @staticmethod
    def parse_tag(tag):
        """Decode a tag produced by `generate_tag`.

        Returns
        -------
        patch_index : int
        data_type : DataType

        Raises
        ------
        ProtocolError
            If the tag is negative.
        """
        if tag < 0:
            raise ProtocolError("Invalid tag {}".format(tag))
        patch_index, data_type = divmod(tag, N_DATA_TYPES)
        return patch_index, DataType(data_type)

    def set_receive_status(self, patch_index, data_type):
        """Mark (patch, data type) as received.

        Raises
        ------
        ProtocolError
            If the pair is not expected or was already received.
        """
        key = (patch_index, DataType(data_type))
        if key not in self._received:
            raise ProtocolError(
                "Unexpected consolidation data: patch {}, {}".format(patch_index, key[1].name)
            )
        if self._received[key]:
            raise ProtocolError(
                "Duplicate consolidation data: patch {}, {}".format(patch_index, key[1].name)
            )
        self._received[key] = True

    def received_count(self):
        return sum(self._received.values())

    def done(self):
        """Whether every expected (patch, data type) pair has arrived."""
        return all(self._received.values())

    def add_send_request(self, request):
        self._send_requests.append(request)

    def wait_send(self, comm):
        """Complete every outstanding send of this round."""
        comm.waitall(self._send_requests)
        self._send_requests = []
