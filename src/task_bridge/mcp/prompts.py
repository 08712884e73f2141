"""MCP prompt templates for the architect and executor workflows."""

from mcp.server.fastmcp import FastMCP


def register_prompts(mcp: FastMCP, mode: str) -> None:
    if mode in ("architect", "full"):

        @mcp.prompt()
        def plan_work(goal: str) -> str:
            """Generate a prompt to break a goal into queued tasks."""
            return (
                f"I need to accomplish the following goal:\n\n"
                f"{goal}\n\n"
                f"Please break this down into concrete tasks for the executor. For each task:\n"
                f"1. Give it a clear, concise title\n"
                f"2. Write instructions and a list of acceptance criteria\n"
                f"3. Pick a priority (critical, high, normal, low) and a category\n"
                f"4. Identify which tasks must finish first and pass them as depends_on\n\n"
                f"Use get_state first to check the current focus and recent decisions, "
                f"then push_task or push_tasks to queue the work."
            )

        @mcp.prompt()
        def review_queue() -> str:
            """Generate a prompt for reviewing progress and unblocking the executor."""
            return (
                "Please review the state of the shared task queue.\n\n"
                "1. Use get_clarifications and answer every pending question with respond_clarification\n"
                "2. Use list_tasks to see what is queued, in progress, and blocked\n"
                "3. Use get_history to review recently finished tasks and their results\n"
                "4. Log any decision you make along the way with log_decision\n"
                "5. Finish with sync and a short summary of what changed"
            )

    if mode in ("executor", "full"):

        @mcp.prompt()
        def start_session() -> str:
            """Generate a prompt to pick work back up at the start of a session."""
            return (
                "You are starting a work session as the executor.\n\n"
                "1. Use load_context to restore your previous session, if there is one\n"
                "2. If a task was in progress, use load_task_context on it and continue\n"
                "3. Otherwise use pull_task, then claim_task on the task it returns\n"
                "4. Report progress with report_progress as you go, and ask with "
                "request_clarification when the instructions are ambiguous\n"
                "5. Finish with complete_task or fail_task, and save_context before stopping"
            )

        @mcp.prompt()
        def handle_answer(task_id: str) -> str:
            """Generate a prompt to continue a task after a clarification was answered."""
            return (
                f"Your clarification on task '{task_id}' may have been answered.\n\n"
                f"Use resume_task on '{task_id}'. It returns the clarification answers; "
                f"read them, then continue the work and report progress."
            )
