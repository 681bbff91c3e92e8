"""Streamlit front-end for the payment analysis pipeline."""
from __future__ import annotations

import time
from typing import Sequence

import pandas as pd
import streamlit as st

from payment_analyzer import (
    AnalysisContext,
    AnalysisService,
    DocumentExtractor,
    FileSystemAnalysisRepository,
    InMemoryRulesRepository,
    MergeStrategy,
    PaymentRules,
    PdfTextExtractor,
    UploadedDocument,
)
from payment_analyzer.application.dto import AnalysisResponse
from payment_analyzer.config import SETTINGS
from payment_analyzer.domain.values import Money
from payment_analyzer.exceptions import PaymentAnalyzerError
from payment_analyzer.logging_setup import configure_logging
from payment_analyzer.presentation.export import entries_to_rows, render_csv, render_html, render_json

OWNER_ID = "streamlit"

st.set_page_config(page_title="Payment Analyzer", layout="wide")
st.title("Payment Analyzer")


@st.cache_resource
def get_service() -> AnalysisService:
    configure_logging()
    context = AnalysisContext(
        analyses=FileSystemAnalysisRepository(SETTINGS.analyses_dir),
        rules=InMemoryRulesRepository(),
        extractor=DocumentExtractor(PdfTextExtractor()),
    )
    return AnalysisService(context)


def uploaded_documents(files: Sequence) -> list[UploadedDocument]:
    # Streamlit uploads carry no modification time.
    return [UploadedDocument(name=item.name, content=item.getvalue()) for item in files]


def rate_card_editor() -> PaymentRules:
    defaults = SETTINGS.default_rates
    cols = st.columns(6)
    labels = [
        ("weekday_rate", "Weekday rate", defaults.weekday_rate),
        ("saturday_rate", "Saturday rate", defaults.saturday_rate),
        ("unloading_bonus", "Unloading bonus", defaults.unloading_bonus),
        ("attendance_bonus", "Attendance bonus", defaults.attendance_bonus),
        ("early_bonus", "Early bonus", defaults.early_bonus),
        ("pickup_rate", "Pickup rate", defaults.pickup_rate),
    ]
    values: dict[str, Money] = {}
    for col, (name, label, default) in zip(cols, labels):
        with col:
            raw = st.text_input(label, value=f"{default:.2f}", key=f"rate_{name}")
            values[name] = Money.of(raw or "0")
    return PaymentRules.defaults(OWNER_ID, **values)


def wait_for(service: AnalysisService, submission_id: str) -> AnalysisResponse:
    bar = st.progress(0, text="Starting")
    while not service.is_done(submission_id):
        snapshot = service.progress(submission_id)
        if snapshot is not None:
            stage = snapshot.current_stage.value if snapshot.current_stage else "queued"
            details = ""
            if snapshot.current_stage is not None:
                details = snapshot.stage(snapshot.current_stage).details or ""
            bar.progress(min(snapshot.overall_progress, 100), text=f"{stage} {details}".strip())
        time.sleep(0.2)
    return service.result(submission_id)


def entries_dataframe(response: AnalysisResponse) -> pd.DataFrame:
    return pd.DataFrame(entries_to_rows(response.analysis.entries))


def show_result(response: AnalysisResponse) -> None:
    totals = response.totals
    cols = st.columns(5)
    cols[0].metric("Working days", totals.working_days)
    cols[1].metric("Consignments", totals.total_consignments)
    cols[2].metric("Expected", str(totals.expected_total))
    cols[3].metric("Paid", str(totals.paid_total))
    cols[4].metric("Difference", str(totals.difference_total), totals.overall_status.value)

    if response.warnings:
        with st.expander(f"Warnings ({response.warning_count})"):
            for warning in response.warnings:
                st.write(f"- {warning}")

    st.dataframe(entries_dataframe(response), use_container_width=True)
    analysis = response.analysis
    st.download_button(
        "Download CSV",
        data=render_csv(analysis),
        file_name=f"analysis_{analysis.id}.csv",
        mime="text/csv",
    )
    st.download_button(
        "Download JSON",
        data=render_json(analysis).encode("utf-8"),
        file_name=f"analysis_{analysis.id}.json",
        mime="application/json",
    )
    st.download_button(
        "Download HTML",
        data=render_html(analysis).encode("utf-8"),
        file_name=f"analysis_{analysis.id}.html",
        mime="text/html",
    )


service = get_service()

if "result" not in st.session_state:
    st.session_state["result"] = None

st.subheader("Rate card")
try:
    rules = rate_card_editor()
except (ValueError, TypeError) as exc:
    st.error(f"Invalid rate: {exc}")
    st.stop()

tabs = st.tabs(["New analysis", "Update analysis", "History"])

with tabs[0]:
    files = st.file_uploader(
        "Upload runsheets and invoices",
        type=["pdf", "txt", "csv", "xlsx", "xls"],
        accept_multiple_files=True,
        key="new_files",
    )
    if st.button("Run analysis", disabled=not files):
        try:
            submission_id = service.submit_in_background(OWNER_ID, uploaded_documents(files), rules_versions=[rules])
            st.session_state["result"] = wait_for(service, submission_id)
        except PaymentAnalyzerError as exc:
            st.error(str(exc))

with tabs[1]:
    saved = service.history(OWNER_ID)
    options = {f"{item.period.format_range()} ({item.id[:8]})": item.id for item in saved}
    choice = st.selectbox("Analysis", list(options)) if options else None
    strategy = st.radio(
        "Merge strategy",
        [item.value for item in MergeStrategy],
        index=[item.value for item in MergeStrategy].index(MergeStrategy.SMART.value),
        horizontal=True,
        help="replace and max can be re-applied safely; add and multi-line smart add again each time",
    )
    more_files = st.file_uploader(
        "Upload further documents",
        type=["pdf", "txt", "csv", "xlsx", "xls"],
        accept_multiple_files=True,
        key="update_files",
    )
    if st.button("Update analysis", disabled=not (choice and more_files)):
        try:
            submission_id = service.update_in_background(
                options[choice],
                OWNER_ID,
                uploaded_documents(more_files),
                MergeStrategy(strategy),
                rules_versions=[rules],
            )
            st.session_state["result"] = wait_for(service, submission_id)
        except PaymentAnalyzerError as exc:
            st.error(str(exc))

with tabs[2]:
    history = service.history(OWNER_ID)
    if not history:
        st.info("No saved analyses yet.")
    for item in history:
        st.write(
            f"{item.created_at:%Y-%m-%d %H:%M} | {item.period.format_range()} | "
            f"{item.status.value} | {len(item.entries)} days"
        )
        if st.button("Delete", key=f"delete_{item.id}"):
            service.delete(item.id, OWNER_ID)
            st.rerun()

result = st.session_state.get("result")
if result:
    st.subheader("Results")
    show_result(result)
