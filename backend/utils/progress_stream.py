"""
Newline-delimited JSON progress streams for image pull and build.

Each line is one JSON object:
    {"status": "..."}
    {"status": "...", "progress": "..."}
    {"error": "..."}
Build output additionally carries {"stream": "..."} lines.

The server side produces lines with progress_event and encode. decode and
consume are the reading side for clients of the pull and build endpoints:
consume classifies a finished stream as completed, failed or ambiguous. A
stream that closes without a final success marker is ambiguous, and the
client re-queries the image list for the actual state.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

MEDIA_TYPE = "application/x-ndjson"

PULL_SUCCESS = "Pull completed successfully"
BUILD_SUCCESS = "Build completed successfully"
SUCCESS_MARKERS = (PULL_SUCCESS, BUILD_SUCCESS)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_AMBIGUOUS = "ambiguous"


def progress_event(raw: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """
    Normalize one event from the docker API into the wire shape.

    Returns None for events that carry nothing worth forwarding (aux digests,
    empty stream chunks).
    """
    if raw.get('error') or raw.get('errorDetail'):
        detail = raw.get('errorDetail') or {}
        return {'error': str(raw.get('error') or detail.get('message') or 'Unknown error')}

    if 'stream' in raw:
        text = str(raw['stream'])
        if not text.strip():
            return None
        return {'stream': text}

    status = raw.get('status')
    if not status:
        return None

    event = {'status': str(status)}
    if raw.get('id'):
        event['id'] = str(raw['id'])
    if raw.get('progress'):
        event['progress'] = str(raw['progress'])
    return event


def encode(event: Dict[str, Any]) -> bytes:
    """Serialize one event as a single NDJSON line"""
    return (json.dumps(event, separators=(',', ':')) + '\n').encode('utf-8')


def decode(line) -> Dict[str, Any]:
    """Parse one NDJSON line. Raises ValueError on anything that isn't a JSON object."""
    if isinstance(line, bytes):
        line = line.decode('utf-8')
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"Progress line is not a JSON object: {line!r}")
    return data


@dataclass
class StreamOutcome:
    """Summary of a consumed progress stream"""
    outcome: str
    events: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


def consume(lines: Iterable) -> StreamOutcome:
    """
    Read a whole NDJSON stream and classify it.

    completed: last event is a success marker
    failed: an {"error"} event was seen
    ambiguous: the stream ended without either
    """
    events = []
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode('utf-8')
        if not line.strip():
            continue
        event = decode(line)
        events.append(event)
        if 'error' in event:
            return StreamOutcome(OUTCOME_FAILED, events, event['error'])

    if events and events[-1].get('status') in SUCCESS_MARKERS:
        return StreamOutcome(OUTCOME_COMPLETED, events)

    logger.warning("Progress stream ended without a success marker, outcome is ambiguous")
    return StreamOutcome(OUTCOME_AMBIGUOUS, events)
