"""Conversion between stored candidate records and aiortc candidates.

Records use the browser `RTCIceCandidate.toJSON()` shape so that browser peers
can share the same session:

    {"candidate": "candidate:1 1 udp 2122260223 192.0.2.1 54321 typ host",
     "sdpMid": "0", "sdpMLineIndex": 0}
"""

from __future__ import annotations

from typing import Any

from aiortc import RTCIceCandidate
from aiortc.sdp import candidate_from_sdp

CANDIDATE_PREFIX = "candidate:"


def is_end_of_candidates(record: Any) -> bool:
    if not isinstance(record, dict):
        return True
    return not str(record.get("candidate") or "").strip()


def candidate_from_record(record: dict[str, Any]) -> RTCIceCandidate:
    line = str(record.get("candidate") or "").strip()
    if not line:
        raise ValueError("Empty candidate line")
    try:
        candidate = candidate_from_sdp(line.removeprefix(CANDIDATE_PREFIX))
    except (AssertionError, IndexError, ValueError) as exc:
        # aiortc asserts on short lines instead of raising.
        raise ValueError(f"Malformed candidate line {line!r}") from exc
    candidate.sdpMid = record.get("sdpMid")
    index = record.get("sdpMLineIndex")
    candidate.sdpMLineIndex = int(index) if index is not None else None
    return candidate


def candidates_from_sdp(sdp: str) -> list[dict[str, Any]]:
    """Collect the `a=candidate` lines of a session description as records."""

    mids = _mids_by_index(sdp)
    records: list[dict[str, Any]] = []
    m_line_index = -1
    for raw in sdp.splitlines():
        line = raw.strip()
        if line.startswith("m="):
            m_line_index += 1
        elif line.startswith("a=candidate:") and m_line_index >= 0:
            records.append(
                {
                    "candidate": line.removeprefix("a="),
                    "sdpMid": mids.get(m_line_index),
                    "sdpMLineIndex": m_line_index,
                }
            )
    return records


def _mids_by_index(sdp: str) -> dict[int, str]:
    mids: dict[int, str] = {}
    index = -1
    for raw in sdp.splitlines():
        line = raw.strip()
        if line.startswith("m="):
            index += 1
        elif line.startswith("a=mid:") and index >= 0:
            mids[index] = line.removeprefix("a=mid:")
    return mids
