"""
Streamlit Frontend for Ledgerforms

The user-facing side of the schema engine: expense and income forms
built from each user's own field list, record lists filtered by the
active budget period, and pages to manage fields and periods.

DESIGN PRINCIPLES:
1. Forms are rendered from the field catalog, never hard-coded
2. Clear error messages that name the offending field
3. Visual feedback for all operations
4. Nothing changes without an explicit button press
"""

import asyncio
from datetime import date
from typing import Any, Optional
from uuid import UUID

import streamlit as st

from ledgerforms.catalog import ProtectedFieldError
from ledgerforms.config import get_settings, validate_all_settings
from ledgerforms.forms import FormInput, SchemaBoundForm
from ledgerforms.models.field import FieldKind, RecordContext
from ledgerforms.models.record import OCCURRED_ON_KEY
from ledgerforms.orchestrator import (
    BudgetPeriodFlow,
    FieldSchemaFlow,
    RecordFlow,
    create_app_components,
)
from ledgerforms.services.storage import NotFoundError, StorageError
from ledgerforms.validation import ValidationError


# Page configuration
st.set_page_config(
    page_title="Ledgerforms",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
    }
    .big-number {
        font-size: 2.0em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached)."""
    return create_app_components()


def main():
    """Main application entry point."""
    try:
        schema_flow, record_flow, period_flow, _ = get_components()
    except StorageError as e:
        # Not cached, so the next rerun tries to connect again
        st.error(f"❌ Storage is unavailable: {e}")
        st.info("Check the DATABASE_ settings, or set STORAGE_BACKEND=memory.")
        st.stop()

    st.sidebar.title("💰 Ledgerforms")
    st.sidebar.markdown("---")

    owner = st.sidebar.text_input(
        "Profile",
        value=st.session_state.get("owner", "default"),
        help="Every profile has its own fields, records and periods",
    ).strip() or "default"
    st.session_state.owner = owner

    page = st.sidebar.radio(
        "Navigate to:",
        ["💸 Expenses", "💵 Incomes", "🧩 Form Fields", "📅 Budget Periods", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **How to use:**
        1. Pick a budget period
        2. Add the fields you want on your forms
        3. Record expenses and incomes
        """
    )

    if page == "💸 Expenses":
        render_records_page(schema_flow, record_flow, period_flow, owner, RecordContext.EXPENSE)
    elif page == "💵 Incomes":
        render_records_page(schema_flow, record_flow, period_flow, owner, RecordContext.INCOME)
    elif page == "🧩 Form Fields":
        render_fields_page(schema_flow, owner)
    elif page == "📅 Budget Periods":
        render_periods_page(period_flow, owner)
    elif page == "⚙️ Settings":
        render_settings_page()


# =============================================================================
# RECORDS
# =============================================================================

def render_input(form_input: FormInput, widget_key: str) -> Any:
    """Render one catalog field as a Streamlit widget and return its value."""
    value = form_input.value

    if form_input.kind == FieldKind.NUMBER:
        if form_input.key == "amount":
            return st.number_input(
                form_input.label,
                min_value=0.0,
                value=float(value) if value not in (None, "") else 0.0,
                step=0.01,
                format="%.2f",
                key=widget_key,
            )
        return st.number_input(
            form_input.label,
            value=float(value) if value not in (None, "") else None,
            key=widget_key,
        )

    if form_input.kind == FieldKind.SELECT:
        options = form_input.options or [get_settings().app.default_expense_category]
        index = options.index(value) if value in options else 0
        return st.selectbox(form_input.label, options=options, index=index, key=widget_key)

    return st.text_input(
        form_input.label,
        value="" if value is None else str(value),
        key=widget_key,
    )


def render_record_form(
    record_flow: RecordFlow,
    form: SchemaBoundForm,
    owner: str,
    context: RecordContext,
    record_id: Optional[UUID] = None,
    values: Optional[dict] = None,
) -> None:
    """Create form, or edit form when `record_id` is given."""
    values = values or {}
    form_key = f"{context.value}_{record_id or 'new'}"

    with st.form(form_key, clear_on_submit=record_id is None):
        entered = {}
        for form_input in form.inputs(values):
            entered[form_input.key] = render_input(form_input, f"{form_key}_{form_input.key}")

        stored_date = values.get(OCCURRED_ON_KEY)
        occurred_on = st.date_input(
            "Date",
            value=date.fromisoformat(stored_date) if stored_date else date.today(),
            key=f"{form_key}_date",
        )

        label = "💾 Save Changes" if record_id else "➕ Add"
        submitted = st.form_submit_button(label, type="primary")

    if not submitted:
        return

    submission = form.collect(entered)
    submission[OCCURRED_ON_KEY] = occurred_on

    try:
        if record_id:
            run_async(record_flow.update_record(owner, context, record_id, submission))
            st.session_state.pop(f"editing_{context.value}", None)
            st.success("✅ Changes saved")
        else:
            run_async(record_flow.create_record(owner, context, submission))
            st.success("✅ Saved")
        st.rerun()
    except ValidationError as e:
        st.error(f"❌ {e.field}: {e.message}")
    except NotFoundError:
        st.error("❌ This record no longer exists")
        st.session_state.pop(f"editing_{context.value}", None)
    except StorageError:
        st.error("❌ Could not save. Please try again.")


def render_records_page(
    schema_flow: FieldSchemaFlow,
    record_flow: RecordFlow,
    period_flow: BudgetPeriodFlow,
    owner: str,
    context: RecordContext,
):
    """Render the expense or income page."""
    title = "💸 Expenses" if context == RecordContext.EXPENSE else "💵 Incomes"
    st.title(title)

    fields = run_async(schema_flow.get_active_fields(owner, context))
    all_fields = run_async(schema_flow.get_all_fields(owner, context))
    form = SchemaBoundForm(fields, get_settings().app.categories_list)

    editing_key = f"editing_{context.value}"
    editing_id = st.session_state.get(editing_key)

    if editing_id:
        st.markdown("### ✏️ Edit")
        try:
            values = run_async(record_flow.edit_form(owner, context, editing_id))
        except NotFoundError:
            st.session_state.pop(editing_key, None)
            st.rerun()
        render_record_form(record_flow, form, owner, context, editing_id, values)
        if st.button("Cancel"):
            st.session_state.pop(editing_key, None)
            st.rerun()
    else:
        st.markdown("### ➕ New")
        render_record_form(record_flow, form, owner, context)

    st.markdown("---")

    period = run_async(period_flow.active_period(owner))
    records = run_async(record_flow.list_records_in_active_period(owner, context))
    total = sum((r.amount for r in records), start=0)

    period_name = period.name if period else "All time"
    st.markdown(f"### 📋 {period_name}")
    st.markdown(f'<div class="big-number">{total:.2f}</div>', unsafe_allow_html=True)

    if not records:
        st.info("Nothing recorded in this period yet.")
        return

    # Disabled fields still render, so old data stays visible
    history_fields = [f.model_copy(update={"is_enabled": True}) for f in all_fields]
    display = SchemaBoundForm(history_fields, [])

    for record in records:
        header = f"{record.occurred_on.isoformat()} | {record.amount:.2f}"
        if record.description:
            header += f" | {record.description}"

        with st.expander(header):
            flat = record_flow.composer.decode(record, history_fields)
            for label, value in display.render_record(flat):
                st.markdown(f"**{label}:** {value}")

            col1, col2, col3 = st.columns(3)
            with col1:
                if st.button("✏️ Edit", key=f"edit_{record.id}"):
                    st.session_state[editing_key] = record.id
                    st.rerun()
            with col2:
                if st.button("📄 Duplicate", key=f"dup_{record.id}"):
                    try:
                        run_async(record_flow.duplicate_record(owner, context, record.id))
                        st.rerun()
                    except (ValidationError, StorageError) as e:
                        st.error(f"❌ Could not duplicate: {e}")
            with col3:
                if st.button("🗑️ Delete", key=f"del_{record.id}"):
                    try:
                        run_async(record_flow.delete_record(owner, context, record.id))
                    except NotFoundError:
                        pass
                    st.rerun()


# =============================================================================
# FORM FIELDS
# =============================================================================

def render_fields_page(schema_flow: FieldSchemaFlow, owner: str):
    """Render the field management page."""
    st.title("🧩 Form Fields")
    st.markdown("Choose which fields appear on your forms, and in what order.")

    context = st.radio(
        "Form",
        list(RecordContext),
        format_func=lambda c: c.value.title(),
        horizontal=True,
    )

    with st.form(f"new_field_{context.value}", clear_on_submit=True):
        col1, col2 = st.columns([3, 1])
        with col1:
            label = st.text_input("New field name")
        with col2:
            kind = st.selectbox(
                "Type",
                list(FieldKind),
                format_func=lambda k: k.value.title(),
            )
        if st.form_submit_button("➕ Add Field", type="primary"):
            try:
                run_async(schema_flow.create_field(owner, context, label, kind))
                st.success("✅ Field added")
            except ValidationError as e:
                st.error(f"❌ {e.message}")

    fields = run_async(schema_flow.get_all_fields(owner, context))
    ids = [f.id for f in fields]

    st.markdown("---")

    for position, field in enumerate(fields):
        col1, col2, col3, col4, col5 = st.columns([4, 1, 1, 2, 2])

        with col1:
            status = "" if field.is_enabled else " *(hidden)*"
            core = " 🔒" if field.is_protected else ""
            st.markdown(f"**{field.label}**{core}{status}  \n`{field.kind.value}`")

        with col2:
            if position > 0 and st.button("⬆️", key=f"up_{field.id}"):
                ids[position - 1], ids[position] = ids[position], ids[position - 1]
                run_async(schema_flow.reorder_fields(owner, context, ids))
                st.rerun()

        with col3:
            if position < len(fields) - 1 and st.button("⬇️", key=f"down_{field.id}"):
                ids[position + 1], ids[position] = ids[position], ids[position + 1]
                run_async(schema_flow.reorder_fields(owner, context, ids))
                st.rerun()

        with col4:
            with st.popover("✏️ Rename"):
                new_label = st.text_input("Name", value=field.label, key=f"label_{field.id}")
                if st.button("Save", key=f"relabel_{field.id}"):
                    try:
                        run_async(schema_flow.relabel_field(owner, field.id, new_label))
                        st.rerun()
                    except (ValidationError, NotFoundError) as e:
                        st.error(f"❌ {e}")

        with col5:
            if not field.is_enabled:
                if st.button("↩️ Show", key=f"restore_{field.id}"):
                    run_async(schema_flow.restore_field(owner, field.id))
                    st.rerun()
            elif not field.is_protected:
                if st.button("🗑️ Remove", key=f"retire_{field.id}"):
                    try:
                        run_async(schema_flow.retire_field(owner, field.id))
                        st.rerun()
                    except (ProtectedFieldError, NotFoundError) as e:
                        st.error(f"❌ {e}")


# =============================================================================
# BUDGET PERIODS
# =============================================================================

def render_periods_page(period_flow: BudgetPeriodFlow, owner: str):
    """Render the budget period page."""
    st.title("📅 Budget Periods")
    st.markdown("The active period decides which records your lists show.")

    periods = run_async(period_flow.list_periods(owner))
    today = date.today()

    for period in periods:
        date_range = period.date_range(today)
        col1, col2, col3 = st.columns([4, 2, 2])

        with col1:
            marker = "✅ " if period.is_active else ""
            st.markdown(f"{marker}**{period.name}**  \n{date_range.start} → {date_range.end}")

        with col2:
            if not period.is_active and st.button("Use", key=f"activate_{period.id}"):
                try:
                    run_async(period_flow.activate_period(owner, period.id))
                    st.rerun()
                except StorageError:
                    st.error("❌ Could not switch period. Nothing was changed.")

        with col3:
            if period.is_custom and st.button("🗑️ Delete", key=f"delperiod_{period.id}"):
                try:
                    run_async(period_flow.delete_period(owner, period.id))
                    st.rerun()
                except (ValidationError, StorageError) as e:
                    st.error(f"❌ {e}")

    st.markdown("---")
    st.markdown("### ➕ Custom Period")

    with st.form("new_period", clear_on_submit=True):
        name = st.text_input("Name")
        col1, col2 = st.columns(2)
        with col1:
            start = st.date_input("From", value=today)
        with col2:
            end = st.date_input("To", value=today)
        if st.form_submit_button("Add Period", type="primary"):
            try:
                run_async(period_flow.create_custom_period(owner, name, start, end))
                st.success("✅ Period added")
                st.rerun()
            except ValidationError as e:
                st.error(f"❌ {e.message}")


# =============================================================================
# SETTINGS
# =============================================================================

def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Application", "app"),
        ("Database (PostgreSQL)", "database"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    app_settings = get_settings().app
    st.markdown(f"**Storage backend:** `{app_settings.storage_backend}`")
    st.markdown(f"**Categories:** {', '.join(app_settings.categories_list)}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
