"""Hypothesis strategies for journal bundles."""

from __future__ import annotations

from hypothesis import strategies as st

from healthjournal.domain.models import TIME_SLOTS, JournalBundle, TimeSlotEntry

MEDICATION_NAMES = ["Paracetamol", "Ibuprofen", "Omeprazol", "Metformina", "Ácido fólico"]

medication_names = st.sampled_from(MEDICATION_NAMES)

readings = st.one_of(
    st.none(),
    st.integers(min_value=-1000, max_value=1000),
    st.floats(allow_nan=False, allow_infinity=False, width=32),
)


@st.composite
def bundles(draw: st.DrawFn) -> JournalBundle:
    """Bundles that satisfy referential integrity (every name is in the catalog)."""
    catalog = draw(st.lists(medication_names, unique=True, max_size=len(MEDICATION_NAMES)))
    meds = st.lists(st.sampled_from(catalog), max_size=4) if catalog else st.just([])
    entries = st.builds(
        TimeSlotEntry,
        value=readings,
        medications=meds,
        comment=st.text(max_size=20),
    )
    days = st.dates().map(lambda d: d.isoformat())
    records = st.dictionaries(st.sampled_from(TIME_SLOTS), entries, max_size=4)
    health_data = draw(st.dictionaries(days, records, max_size=4))
    pattern_lists = (
        st.lists(st.sampled_from(catalog), min_size=1, max_size=3) if catalog else st.nothing()
    )
    pattern = (
        draw(st.dictionaries(st.sampled_from(TIME_SLOTS), pattern_lists, max_size=4))
        if catalog
        else {}
    )
    return JournalBundle(health_data=health_data, medications=catalog, standard_pattern=pattern)
