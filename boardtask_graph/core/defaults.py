from __future__ import annotations

from boardtask_graph.core.model import NodeType, TaskStatus


# System node types seeded by the Boardtask server: (id, name, color).
SYSTEM_NODE_TYPES: list[NodeType] = [
    NodeType(id="01JNODETYPE00000000TASK000", name="Task", color="#3B82F6"),
    NodeType(id="01JNODETYPE00000000BUG0000", name="Bug", color="#EF4444"),
    NodeType(id="01JNODETYPE00000000EPIC000", name="Epic", color="#8B5CF6"),
    NodeType(id="01JNODETYPE00000000MILESTON", name="Milestone", color="#F59E0B"),
    NodeType(id="01JNODETYPE00000000SPIKE00", name="Spike", color="#10B981"),
    NodeType(id="01JNODETYPE00000000STORY00", name="Story", color="#06B6D4"),
]

TASK_NODE_TYPE_ID = "01JNODETYPE00000000TASK000"

TODO_STATUS_ID = "01JSTATUS00000000TODO0000"
IN_PROGRESS_STATUS_ID = "01JSTATUS00000000INPROG00"
DONE_STATUS_ID = "01JSTATUS00000000DONE0000"

SYSTEM_TASK_STATUSES: list[TaskStatus] = [
    TaskStatus(id=TODO_STATUS_ID, name="To do", sort_order=0),
    TaskStatus(id=IN_PROGRESS_STATUS_ID, name="In progress", sort_order=1),
    TaskStatus(id=DONE_STATUS_ID, name="Done", sort_order=2),
]

# Progress filter value -> status id it keeps visible.
FILTER_STATUS_IDS: dict[str, str] = {
    "todo": TODO_STATUS_ID,
    "in-progress": IN_PROGRESS_STATUS_ID,
    "done": DONE_STATUS_ID,
}

DEFAULT_NODE_TYPE_ID = TASK_NODE_TYPE_ID
DEFAULT_NODE_TITLE = "New Node"
DEFAULT_GROUP_TITLE = "New Group"
