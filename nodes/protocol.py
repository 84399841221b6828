"""
homeworks-poly NodeServer/Plugin for EISY/Polisy

(C) 2025

Homeworks QS integration protocol, as carried over the MQTT bridge.

  #OUTPUT,<id>,1,<level>[,<fade>]   set an output level (sent)
  ?OUTPUT,<id>,1                    ask for an output level (sent)
  ~OUTPUT,<id>,1,<level>            output level report (received)

Levels are percentages; the processor reports them with two decimals.
"""

# std libraries
from typing import List, NamedTuple, Optional

# external libraries
pass

# personal libraries
pass

# constants
ACTION_LEVEL = 1
PROMPTS = ('GNET>', 'QNET>')
LEVEL_MIN = 0
LEVEL_MAX = 100


class ProtocolError(ValueError):
    """Raised for an OUTPUT line that cannot be decoded."""


class OutputReport(NamedTuple):
    integration_id: str
    level: int


def format_set_level(integration_id, level: int, fade: Optional[float] = None) -> str:
    """Build the command that sets an output to level percent."""
    cmd = f"#OUTPUT,{integration_id},{ACTION_LEVEL},{level}"
    if fade is not None:
        cmd += f",{fade:g}"
    return cmd


def format_query(integration_id) -> str:
    """Build the command asking the processor for an output level."""
    return f"?OUTPUT,{integration_id},{ACTION_LEVEL}"


def split_lines(payload: str) -> List[str]:
    """Split a bridge payload into protocol lines, dropping prompts and blanks."""
    lines = []
    for raw in payload.replace('\r', '\n').split('\n'):
        line = raw.strip()
        for prompt in PROMPTS:
            while line.startswith(prompt):
                line = line[len(prompt):].strip()
        if line:
            lines.append(line)
    return lines


def parse_output(line: str) -> Optional[OutputReport]:
    """Decode a ~OUTPUT level report.

    Returns:
        OutputReport, or None if the line is not an OUTPUT level report
        (other report kinds, other actions).

    Raises:
        ProtocolError: the line is an OUTPUT report but is malformed or
            carries a level outside 0..100.
    """
    line = line.strip()
    if not line.upper().startswith('~OUTPUT,'):
        return None

    fields = [f.strip() for f in line.split(',')]
    if len(fields) < 4:
        raise ProtocolError(f"short OUTPUT report: {line!r}")

    integration_id, action, raw_level = fields[1], fields[2], fields[3]
    if not integration_id:
        raise ProtocolError(f"missing integration id: {line!r}")
    try:
        if int(action) != ACTION_LEVEL:
            return None
        level = int(round(float(raw_level)))
    except (ValueError, OverflowError) as ex:
        raise ProtocolError(f"bad OUTPUT report {line!r}: {ex}") from ex

    if not LEVEL_MIN <= level <= LEVEL_MAX:
        raise ProtocolError(f"level {level} out of range: {line!r}")
    return OutputReport(integration_id, level)
