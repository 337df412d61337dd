"""Point current_task_id at the first task that is not done yet."""


def run(ctx):
    for task in ctx.state.get("tasks") or []:
        if task.get("status") != "done":
            ctx.log("picked task", task.get("id"))
            return {"type": "patch", "patch": {"current_task_id": task.get("id")}}
    return {"type": "ok"}
