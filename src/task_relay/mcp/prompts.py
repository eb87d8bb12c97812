"""MCP prompt templates for common workflows."""

from task_relay.mcp.server import mcp


@mcp.prompt()
def plan_work(goal: str, project: str = "") -> str:
    """Generate a prompt to turn a goal into a plan the relay can split."""
    target = f" in the '{project}' project" if project else ""
    return (
        f"I need to accomplish the following goal{target}:\n\n"
        f"{goal}\n\n"
        f"Write a plan with a title line followed by numbered steps. For each step:\n"
        f"1. Give it a clear, concise title\n"
        f"2. Add indented lines describing what needs to be done\n"
        f"3. Add an 'Acceptance:' line stating when the step is done\n"
        f"4. Make steps that need a person (credentials, approvals, deploys) say so in the title\n\n"
        f"Then call split_plan with the plan text. Steps run in order, one after another."
    )


@mcp.prompt()
def work_task(task_id: str) -> str:
    """Generate a prompt for an agent picking up a task."""
    return (
        f"You are working task '{task_id}'.\n\n"
        f"1. Call claim_task for '{task_id}'. Stop if the claim is rejected.\n"
        f"2. Call get_task to read the description and acceptance criteria, and "
        f"list_handoffs with to_task_id='{task_id}' for context from upstream tasks.\n"
        f"3. Do the work.\n"
        f"4. If you need a human (an API key, an approval), create a human-owned task with "
        f"create_task and call self_unblock_task with its id. Do not wait.\n"
        f"5. Otherwise call complete_task with your output and a handoff_summary of at least "
        f"200 characters describing what you did, where it lives and what the next task needs."
    )


@mcp.prompt()
def status_report(project: str = "") -> str:
    """Generate a prompt for a project status report."""
    return (
        f"Please generate a status report for the '{project or 'default'}' project.\n\n"
        f"Use the list_tasks tool to get all tasks, then provide:\n"
        f"1. Overall progress summary\n"
        f"2. Tasks currently in progress\n"
        f"3. Tasks waiting on a human, with their waiting reasons\n"
        f"4. Tasks that are blocked and on what\n"
        f"5. Recommended next tasks to work on"
    )
