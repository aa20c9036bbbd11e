"""Population lab risk analysis CLI.

Usage:
    python -m lab_intelligence --fhir-url <url> [options]
    python -m lab_intelligence --input <observations.ndjson> [options]
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lab_intelligence",
        description="Score every patient's complete lab history and summarise population risk",
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--fhir-url",
        metavar="URL",
        help="Base URL of a FHIR R4 server to analyze",
    )
    group.add_argument(
        "--input",
        metavar="PATH",
        help="NDJSON file of FHIR Patient/Observation resources or Bundles",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Patients fetched and scored concurrently (default: 10)",
    )
    parser.add_argument(
        "--output",
        metavar="PATH",
        default=None,
        help="Write output to file (default: stdout)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log per-stage progress to stderr",
    )
    parser.add_argument(
        "--format",
        choices=["json", "summary"],
        default="json",
        help="Output format: json (machine-readable) or summary (human-readable table)",
    )
    return parser


def format_summary(report, analyses) -> str:
    """Format an AnalysisReport and its analyses as a text table."""
    summary = report.summary
    lines = []
    lines.append("Population Lab Risk Analysis")
    lines.append("=" * len(lines[0]))
    lines.append(
        f"Patients: {summary.total_patients} "
        f"(critical {summary.critical_count}, high {summary.high_risk_count}, "
        f"moderate {summary.moderate_risk_count}, low {summary.low_risk_count})"
    )
    lines.append(f"With abnormal labs: {summary.abnormal_count}")
    lines.append(
        f"Data quality: {summary.data_quality_score:.0%} "
        f"({summary.incomplete_data_count} incomplete)"
    )
    if summary.analysis_timestamp:
        lines.append(f"Analyzed: {summary.analysis_timestamp}")

    lines.append("")
    col_widths = [20, 10, 8, 10, 10, 8, 14]
    headers = ["Patient", "Risk", "Score", "Critical", "Abnormal", "Labs", "Completeness"]
    lines.append(
        "| "
        + " | ".join(f"{h:<{w}}" for h, w in zip(headers, col_widths))
        + " |"
    )
    lines.append("|" + "|".join("-" * (w + 2) for w in col_widths) + "|")

    for analysis in analyses:
        cells = [
            analysis.patient_id,
            analysis.risk_level.upper(),
            str(analysis.risk_score),
            str(analysis.critical_count),
            str(analysis.abnormal_count),
            str(analysis.total_lab_count),
            f"{analysis.data_completeness:.0%}",
        ]
        lines.append(
            "| "
            + " | ".join(f"{c:<{w}}" for c, w in zip(cells, col_widths))
            + " |"
        )

    lines.append("")
    lines.append(
        f"Completed in {report.stats.duration_seconds:.2f}s - "
        f"{report.stats.error_count} failed, {len(report.warnings)} warnings shown"
    )
    for error in report.errors:
        lines.append(f"ERROR: {error}")
    for warning in report.warnings:
        lines.append(f"WARNING: {warning}")

    return "\n".join(lines)


async def run_analysis(source, config):
    from lab_intelligence.service import AnalysisService

    service = AnalysisService(source, config=config)
    return await service.run_analysis()


async def run_with_fhir(config):
    from lab_intelligence.fhir.client import FHIRClient

    async with FHIRClient(config) as client:
        return await run_analysis(client, config)


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=log_level, format="%(levelname)s: %(message)s", stream=sys.stderr
    )

    from lab_intelligence.errors import (
        InputFileError,
        LabIntelligenceError,
        NoPatientsError,
    )
    from lab_intelligence.schemas.config import AnalysisConfig

    config = AnalysisConfig()
    if args.batch_size is not None:
        if args.batch_size < 1:
            print("Error: --batch-size must be positive", file=sys.stderr)
            return 2
        config.batch_size = args.batch_size

    try:
        if args.input:
            input_path = Path(args.input)
            if not input_path.exists():
                print(f"Error: input file not found: {args.input}", file=sys.stderr)
                return 2
            if not input_path.is_file():
                print(f"Error: input is not a file: {args.input}", file=sys.stderr)
                return 2

            from lab_intelligence.fhir.ndjson import NDJSONSource

            report, analyses = asyncio.run(
                run_analysis(NDJSONSource(input_path), config)
            )
        else:
            config.fhir_base_url = args.fhir_url
            report, analyses = asyncio.run(run_with_fhir(config))
    except (NoPatientsError, InputFileError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except LabIntelligenceError as exc:
        print(f"Error: analysis failed: {exc}", file=sys.stderr)
        return 1

    # Format output
    if args.format == "summary":
        output_text = format_summary(report, analyses)
    else:
        output_data = report.model_dump(mode="json", by_alias=True)
        output_data["analyses"] = [
            a.model_dump(mode="json", by_alias=True) for a in analyses
        ]
        output_text = json.dumps(output_data, indent=2)

    # Write output
    if args.output:
        Path(args.output).write_text(output_text)
    else:
        print(output_text)

    # Exit code based on per-patient failures
    if report.stats.error_count > 0:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
