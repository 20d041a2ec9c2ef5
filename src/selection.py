# selection.py
# UI-local selection state, kept in st.session_state (any mutable mapping); never in the engine
from yard import YardError, parse_slot_id


def run_action(action, *args, report):
    """Call an engine operation; report recoverable errors and return False."""
    try:
        action(*args)
    except YardError as e:
        report(f"❌ {e}")
        return False
    return True


def select_slot(state, slot_id):
    state["selected_slot"] = slot_id


def focus_container(state, yard, cid):
    """Select a container and point the zone/bay pickers at its slot, if it has one."""
    state["selected_container"] = cid
    slot_id = yard.locate(cid)
    if slot_id:
        zone, row, _ = parse_slot_id(slot_id)
        state["selected_slot"] = slot_id
        state["zone_pick"] = zone
        state["bay_pick"] = row
