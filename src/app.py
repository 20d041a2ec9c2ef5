# app.py
import logging
import os

import streamlit as st

from feed import poll
from lookup import search, search_options
from selection import focus_container, run_action, select_slot
from store import YardStore
from yard import Yard, parse_slot_id

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logging.getLogger("tornado").setLevel(logging.ERROR)
logging.getLogger("streamlit.runtime").setLevel(logging.ERROR)

# ------------------- Configurable Yard -------------------
ZONES = ("A", "B", "C")
ROWS_PER_ZONE = 4
COLS_PER_ZONE = 6
STACK_LIMIT = 2
POLL_COUNT = 5
AUTO_PLACE_COUNT = 10
SEED_COUNT = 12
DB_PATH = os.environ.get("YARD_DB_PATH", "yard.db")


@st.cache_resource
def get_store():
    return YardStore(DB_PATH)


store = get_store()

if "yard" not in st.session_state:
    st.session_state.yard = Yard(ZONES, ROWS_PER_ZONE, COLS_PER_ZONE, STACK_LIMIT, store=store)
    st.session_state.yard.seed(poll(SEED_COUNT))
yard = st.session_state.yard

# UI-local selection state; never stored in the engine
st.session_state.setdefault("selected_container", None)
st.session_state.setdefault("selected_slot", None)


def run(action, *args):
    return run_action(action, *args, report=st.error)


def select_container(cid):
    st.session_state.selected_container = cid


# ------------------- Header & KPIs -------------------
st.title("🚢 Yard Slot Management")
st.caption("First-fit placement • Stack limit per slot • Rearrangement highlights")

b1, b2, b3, b4 = st.columns(4)
if b1.button("📥 Poll Inbound"):
    ids = yard.ingest(poll(POLL_COUNT))
    st.success(f"Received {len(ids)} inbound containers.")
if b2.button("🏗 Auto-place"):
    placed = yard.auto_place(AUTO_PLACE_COUNT)
    if placed:
        st.success(f"Placed {placed} container(s).")
    else:
        st.warning("Nothing placed: inbound is empty or the yard is full.")
if b3.button("✅ Acknowledge Changes"):
    yard.acknowledge()
if b4.button("🗑 Reset"):
    yard.reset()
    store.clear_movements()
    st.session_state.selected_container = None
    st.session_state.selected_slot = None

kpi = yard.kpis()
k1, k2, k3 = st.columns(3)
k1.metric("Inbound", kpi["inbound"])
k2.metric("In Yard", f"{kpi['in_yard']} / {kpi['capacity']}", f"{kpi['utilization_pct']}%")
k3.metric("Changed Slots", kpi["changed"])

changed = yard.changed_slots()
containers = yard.containers

# ------------------- Inbound & zone availability -------------------
left, right = st.columns([1, 2])
with left:
    st.subheader("📦 Inbound")
    inbound = yard.inbound
    if not inbound:
        st.text("⬜ empty")
    for cid in inbound:
        c = containers[cid]
        marker = "💚" if cid == st.session_state.selected_container else "🟩"
        st.button(
            f"{marker} {cid} • {c.size.value} {c.container_type.value} • {c.priority.value}",
            key=f"inb-{cid}", on_click=select_container, args=(cid,)
        )

    st.subheader("🗺 Zone Availability")
    for z in yard.zone_availability():
        st.text(f"Zone {z['zone']}: {z['remaining']} / {z['total']} available")

# ------------------- Grid -------------------
with right:
    z_col, r_col = st.columns(2)
    zone = z_col.selectbox("Zone", options=list(yard.zones), key="zone_pick")
    bay = r_col.selectbox("Bay (row)", options=list(range(1, yard.rows_per_zone + 1)), key="bay_pick")

    cols = st.columns(yard.cols_per_zone)
    for col, slot_id in zip(cols, yard.bay_slots(zone, bay)):
        stack = yard.stack(slot_id)
        flag = "🟨" if slot_id in changed else "⬜"
        with col:
            st.button(f"{flag} C{parse_slot_id(slot_id)[2]:02d} ({len(stack)}/{yard.stack_limit})",
                      key=f"slot-{slot_id}", on_click=select_slot, args=(st.session_state, slot_id))
            # top of the stack first
            for cid in reversed(stack):
                marker = "💚" if cid == st.session_state.selected_container else "🟩"
                st.button(f"{marker} {cid}", key=f"chip-{slot_id}-{cid}",
                          on_click=select_container, args=(cid,))

# ------------------- Selected slot -------------------
slot_id = st.session_state.selected_slot
cid = st.session_state.selected_container
if slot_id:
    st.subheader(f"🎯 Slot {slot_id}" + (" (changed)" if slot_id in changed else ""))
    if cid and cid in containers:
        where = containers[cid].slot_id or "Inbound"
        if st.button(f"Move {cid} ({where}) here"):
            if run(yard.move, cid, slot_id):
                st.rerun()
    stack = yard.stack(slot_id)
    for i, item in enumerate(stack):
        c1, c2, c3, c4 = st.columns([3, 1, 1, 1])
        c1.text(f"{i + 1}. {item}" + (" (top)" if i == len(stack) - 1 else ""))
        if c2.button("⬆", key=f"up-{item}", disabled=i == len(stack) - 1):
            if run(yard.reorder, slot_id, i, i + 1):
                st.rerun()
        if c3.button("⬇", key=f"down-{item}", disabled=i == 0):
            if run(yard.reorder, slot_id, i, i - 1):
                st.rerun()
        if c4.button("↩ Inbound", key=f"evict-{item}"):
            if run(yard.evict, slot_id, item):
                st.rerun()

# ------------------- Search -------------------
st.subheader("🔍 Search Container")
labels = {"owner": "Owner", "company": "Company", "container": "Container ID"}
s1, s2 = st.columns([1, 2])
search_type = s1.selectbox("Search by", options=list(labels), format_func=labels.get)
options = search_options(containers, search_type)
value = s2.selectbox("Value", options=["—"] + options, index=0)
if value != "—":
    results = search(containers, search_type, value)
    if results.empty:
        st.info("No containers match that search.")
    else:
        st.dataframe(results, use_container_width=True)
        pick = st.selectbox("Select container", options=list(results["id"]))
        # callback runs before the zone/bay pickers are drawn, so it may set their keys
        st.button("Select", on_click=focus_container, args=(st.session_state, yard, pick))

# ------------------- Movement log -------------------
if st.button("📜 Show Recent Movements"):
    st.dataframe(store.query_movements(limit=200), use_container_width=True)

st.subheader("⬇️ Download Movement Log")
df_log = store.movements_frame()
st.download_button(
    "Download CSV",
    data=df_log.to_csv(index=False).encode("utf-8"),
    file_name="yard_movement_log.csv",
    mime="text/csv"
)
