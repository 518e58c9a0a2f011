"""
Step 0 — Input validation.
Report inconsistent reference dates and malformed mentions.
Nothing is corrected here; findings travel on as warnings.
"""
from __future__ import annotations

from packages.shared.models import CandidateMention, ReferenceDateSet, Warning


def validate_reference_dates(
    reference_dates: ReferenceDateSet,
    document_id: str | None = None,
) -> list[Warning]:
    warnings: list[Warning] = []
    ref = reference_dates

    if ref.admission and ref.discharge and ref.discharge < ref.admission:
        warnings.append(Warning(
            code="DISCHARGE_BEFORE_ADMISSION",
            message=f"Discharge {ref.discharge.isoformat()} precedes admission {ref.admission.isoformat()}",
            document_id=document_id,
        ))

    if ref.ictus and ref.admission and ref.ictus > ref.admission:
        warnings.append(Warning(
            code="ICTUS_AFTER_ADMISSION",
            message=f"Ictus {ref.ictus.isoformat()} is after admission {ref.admission.isoformat()}",
            document_id=document_id,
        ))

    procedure_dates = list(ref.all_procedure_dates)
    if ref.first_procedure_date:
        procedure_dates.append(ref.first_procedure_date)
    for proc_date in sorted(set(procedure_dates)):
        if ref.admission and proc_date < ref.admission:
            warnings.append(Warning(
                code="PROCEDURE_OUTSIDE_STAY",
                message=f"Procedure date {proc_date.isoformat()} precedes admission",
                document_id=document_id,
            ))
        elif ref.discharge and proc_date > ref.discharge:
            warnings.append(Warning(
                code="PROCEDURE_OUTSIDE_STAY",
                message=f"Procedure date {proc_date.isoformat()} follows discharge",
                document_id=document_id,
            ))

    if (
        ref.first_procedure_date
        and ref.all_procedure_dates
        and ref.first_procedure_date != min(ref.all_procedure_dates)
    ):
        warnings.append(Warning(
            code="FIRST_PROCEDURE_MISMATCH",
            message="first_procedure_date is not the earliest of all_procedure_dates",
            document_id=document_id,
        ))

    return warnings


def validate_mentions(
    mentions: list[CandidateMention],
    text: str,
    document_id: str | None = None,
) -> tuple[list[CandidateMention], list[Warning]]:
    """
    Drop repeated mention ids (first occurrence kept) and flag offsets
    that fall outside the document text. Returns (mentions, warnings).
    """
    warnings: list[Warning] = []
    valid: list[CandidateMention] = []
    seen: set[str] = set()

    for mention in mentions:
        if mention.mention_id in seen:
            warnings.append(Warning(
                code="DUPLICATE_MENTION_ID",
                message=f"Mention id '{mention.mention_id}' repeated; later occurrence dropped",
                document_id=document_id,
                mention_id=mention.mention_id,
            ))
            continue
        seen.add(mention.mention_id)

        if text and mention.source_offset > len(text):
            warnings.append(Warning(
                code="MENTION_OFFSET_OUT_OF_RANGE",
                message=(
                    f"Mention '{mention.mention_id}' offset {mention.source_offset} "
                    f"beyond text length {len(text)}"
                ),
                document_id=document_id,
                mention_id=mention.mention_id,
            ))

        if not mention.raw_name.strip():
            warnings.append(Warning(
                code="EMPTY_MENTION_NAME",
                message=f"Mention '{mention.mention_id}' has an empty name",
                document_id=document_id,
                mention_id=mention.mention_id,
            ))

        valid.append(mention)

    return valid, warnings
