"""Tabular renderings of threat history for the CLI and spreadsheet export."""

from pathlib import Path
from typing import Iterable, List

import pandas as pd
from tabulate import tabulate

from .models import Threat


def _threat_row(threat: Threat) -> dict:
    return {
        'ID': threat.id,
        'Domain': threat.domain,
        'Level': threat.threat_level.value.upper(),
        'Score': f"{round(threat.score * 100)}%",
        'Match': threat.match_type.value,
        'Keyword': threat.matched_keyword,
        'Source': threat.source.value,
        'Detected': threat.detected_at.strftime('%Y-%m-%d %H:%M:%S'),
        'Status': threat.status.value,
    }


def format_threats_table(threats: Iterable[Threat]) -> str:
    rows: List[dict] = [_threat_row(threat) for threat in threats]
    if not rows:
        return "No active threats"
    return tabulate(rows, headers='keys', tablefmt='github')


def export_threats_to_excel(threats: Iterable[Threat], path) -> Path:
    """Write threats to an .xlsx file and return its path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([_threat_row(threat) for threat in threats],
                      columns=['ID', 'Domain', 'Level', 'Score', 'Match', 'Keyword', 'Source', 'Detected', 'Status'])
    df.to_excel(path, index=False, sheet_name='Threats')
    return path
