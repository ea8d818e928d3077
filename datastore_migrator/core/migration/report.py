"""Human readable and JSON renderings of a migration report."""

import json

from ...models import MigrationRecord, MigrationReport, MigrationState

COLUMNS = ("SERVICE", "STATE", "REASON", "COUNT", "INDEX")


def _counts(record: MigrationRecord) -> str:
    if record.observed_count is None and record.expected_count is None:
        return "-"
    observed = "?" if record.observed_count is None else record.observed_count
    expected = "?" if record.expected_count is None else record.expected_count
    return f"{observed}/{expected}"


def _row(record: MigrationRecord) -> tuple[str, ...]:
    return (
        record.service,
        record.state.value,
        record.reason or "",
        _counts(record),
        "" if record.target_index is None else str(record.target_index),
    )


def _sample_line(record: MigrationRecord) -> str:
    noun = "tables" if record.engine.is_relational else "keys"
    line = f"{record.service}: {noun} {', '.join(record.sample)}"
    remaining = (record.observed_count or 0) - len(record.sample)
    if remaining > 0:
        line += f" (+{remaining} more)"
    return line


def format_report(report: MigrationReport) -> str:
    """Render the report as an aligned text table with a summary footer."""
    title = f"Datastore migration to {report.target} ({report.engine.value}"
    title += f", {report.method})" if report.method else ")"
    lines = [title, ""]

    rows = [COLUMNS, *(_row(record) for record in report.records)]
    widths = [max(len(row[i]) for row in rows) for i in range(len(COLUMNS))]
    for row in rows:
        lines.append("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())

    details = [record for record in report.records if record.detail or record.warnings]
    if details:
        lines.append("")
        for record in details:
            if record.detail:
                lines.append(f"{record.service}: {record.detail}")
            for warning in record.warnings:
                lines.append(f"{record.service}: warning: {warning}")

    verified = [record for record in report.records if record.state is MigrationState.VERIFIED]
    sampled = [record for record in verified if record.sample]
    if sampled:
        lines.extend(["", "Verified data:"])
        lines.extend(f"  {_sample_line(record)}" for record in sampled)
    hints = [record for record in verified if record.connect_hint]
    if hints:
        lines.extend(["", "Next steps:"])
        lines.extend(f"  {record.service}: {record.connect_hint}" for record in hints)

    lines.append("")
    summary = ", ".join(
        f"{report.count(state)} {state.value}"
        for state in (MigrationState.VERIFIED, MigrationState.SKIPPED, MigrationState.FAILED)
    )
    lines.append(f"Summary: {summary}")
    if report.provisioning_script:
        lines.append(f"Provisioning script: {report.provisioning_script}")
    if report.fatal_error:
        lines.append(f"FATAL: {report.fatal_error}")
    return "\n".join(lines) + "\n"


def report_json(report: MigrationReport) -> str:
    """Serialize the report, adding the computed exit code."""
    payload = report.model_dump(mode="json", exclude_none=True)
    payload["exit_code"] = report.exit_code
    payload["summary"] = {
        state.value: report.count(state)
        for state in (MigrationState.VERIFIED, MigrationState.SKIPPED, MigrationState.FAILED)
    }
    return json.dumps(payload, indent=2) + "\n"
