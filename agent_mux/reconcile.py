"""
Reconciliation between registry truth and live tmux truth.

The registry is the canonical list of agents ever spawned; tmux is canonical
for which of them still have a window. Nothing here touches storage or tmux.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

__all__ = [
    'annotate_liveness',
    'find_dead_agents',
    'find_orphan_windows',
]


def annotate_liveness(agents: Iterable[Mapping[str, Any]], live_window_ids: Iterable[str]) -> List[Dict[str, Any]]:
    """
    Copy each registry agent and add a derived 'alive' flag.

    An agent is alive when its recorded windowId is present in the live
    window list. Agents without a windowId are never alive.

    Args:
        agents: Agent entries from agents.json
        live_window_ids: Window ids currently listed by tmux for the session

    Returns:
        New list of agent dicts, input order preserved
    """
    live = set(live_window_ids)
    annotated = []
    for agent in agents:
        if not isinstance(agent, Mapping):
            continue
        entry = dict(agent)
        window_id = entry.get('windowId')
        entry['alive'] = bool(window_id) and window_id in live
        annotated.append(entry)
    return annotated


def find_dead_agents(agents: Iterable[Mapping[str, Any]], live_window_ids: Iterable[str]) -> List[str]:
    """Names of registry agents whose window is gone."""
    return [a.get('name') for a in annotate_liveness(agents, live_window_ids) if not a['alive']]


def find_orphan_windows(
    windows: Iterable[Mapping[str, Any]],
    agent_tags: Mapping[str, Optional[str]],
    agents: Iterable[Mapping[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Windows that carry an agent-name tag but have no registry entry.

    These are left behind when a spawn created its window and then failed
    before the registry was saved. Untagged windows (e.g. the session's
    initial "main" window or operator-created ones) are never orphans.

    Args:
        windows: Live windows as dicts with windowId/windowIndex/windowName
        agent_tags: windowId -> value of the agent-name tag (None if untagged)
        agents: Agent entries from agents.json

    Returns:
        One dict per orphan window with its tagged agent name added
    """
    registered_ids = {a.get('windowId') for a in agents if isinstance(a, Mapping)}
    orphans = []
    for window in windows:
        window_id = window.get('windowId')
        tag = agent_tags.get(window_id)
        if tag and window_id not in registered_ids:
            orphan = dict(window)
            orphan['agentName'] = tag
            orphans.append(orphan)
    return orphans
