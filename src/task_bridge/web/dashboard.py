"""Dashboard HTML with inline CSS and vanilla JS."""


def get_dashboard_html() -> str:
    return """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Task Bridge</title>
<style>
  :root {
    --bg: #0d1117; --surface: #161b22; --border: #30363d;
    --text: #e6edf3; --text-muted: #8b949e; --text-dim: #6e7681;
    --queued: #8b949e; --active: #58a6ff; --completed: #3fb950; --blocked: #d29922; --failed: #f85149;
  }
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif;
         background: var(--bg); color: var(--text); line-height: 1.5; }
  .container { max-width: 960px; margin: 0 auto; padding: 24px 16px; }

  header { display: flex; justify-content: space-between; align-items: center;
           padding-bottom: 16px; border-bottom: 1px solid var(--border); margin-bottom: 24px; }
  header h1 { font-size: 20px; font-weight: 600; }
  header button { background: var(--surface); color: var(--text-muted); border: 1px solid var(--border);
                  padding: 4px 10px; border-radius: 4px; cursor: pointer; font-size: 12px; }

  .panel { background: var(--surface); border: 1px solid var(--border);
           border-radius: 8px; padding: 16px; margin-bottom: 20px; }
  .panel h2 { font-size: 15px; margin-bottom: 8px; }
  .muted { font-size: 13px; color: var(--text-muted); }

  .summary { display: flex; gap: 16px; margin-bottom: 20px; flex-wrap: wrap; font-size: 14px; }

  .task-list { display: flex; flex-direction: column; gap: 2px; }
  .task-card { background: var(--surface); border: 1px solid var(--border);
               border-radius: 8px; padding: 12px 16px; }
  .task-header { display: flex; align-items: center; gap: 10px; }
  .badge { display: inline-block; padding: 2px 10px; border-radius: 12px; font-size: 11px;
           font-weight: 600; text-transform: uppercase; letter-spacing: 0.5px; }
  .badge.queued { color: var(--queued); }
  .badge.claimed, .badge.in_progress { color: var(--active); }
  .badge.blocked { color: var(--blocked); }
  .badge.completed { color: var(--completed); }
  .badge.failed, .badge.cancelled { color: var(--failed); }
  .priority { font-size: 11px; color: var(--text-dim); text-transform: uppercase; }
  .task-title { font-weight: 600; font-size: 14px; }
  .task-id { font-size: 12px; color: var(--text-dim); font-family: monospace; }
  .task-details { margin-top: 6px; font-size: 13px; color: var(--text-muted); }

  .empty { text-align: center; padding: 48px; color: var(--text-muted); }
</style>
</head>
<body>
<div class="container">
  <header>
    <h1>Task Bridge</h1>
    <button onclick="loadDashboard()">Refresh</button>
  </header>
  <div id="content"><div class="empty">Loading...</div></div>
</div>

<script>
async function fetchJSON(path) {
  const res = await fetch(path);
  if (!res.ok) return null;
  return res.json();
}

async function loadDashboard() {
  const content = document.getElementById('content');
  const [state, queue, tasks, pending] = await Promise.all([
    fetchJSON('/api/state'),
    fetchJSON('/api/queue'),
    fetchJSON('/api/tasks'),
    fetchJSON('/api/clarifications'),
  ]);

  let html = '';

  if (state) {
    html += `<div class="panel">
      <h2>Focus: ${esc(state.current_focus) || '<span class="muted">none</span>'}</h2>
      <div class="muted">Last sync: ${state.last_sync ? new Date(state.last_sync).toLocaleString() : 'never'}</div>
      ${state.known_issues.map(i => `<div class="muted">&middot; ${esc(i)}</div>`).join('')}
    </div>`;
  }

  if (queue) {
    const s = queue.summary;
    html += `<div class="summary">
      <span>${s.queued} queued</span>
      <span>${queue.ready.length} ready</span>
      <span>${s.in_progress} in progress</span>
      <span>${s.blocked} blocked</span>
      <span>${s.completed_total} completed</span>
    </div>`;
  }

  if (pending && pending.length > 0) {
    html += '<div class="panel"><h2>Waiting for an answer</h2>';
    for (const c of pending) {
      html += `<div class="muted"><code>${esc(c.id)}</code> ${esc(c.question)}</div>`;
    }
    html += '</div>';
  }

  if (!tasks || tasks.length === 0) {
    html += '<div class="empty"><h3>No tasks yet</h3><p>Queue one with <code>bridge task add</code></p></div>';
  } else {
    html += '<div class="task-list">' + tasks.map(renderTask).join('') + '</div>';
  }

  content.innerHTML = html;
}

function renderTask(task) {
  let details = '';
  if (task.depends_on.length > 0) {
    details += `<div>Depends on: ${task.depends_on.map(d => `<code>${esc(d)}</code>`).join(', ')}</div>`;
  }
  if (task.result) {
    details += `<div>${task.result.success ? 'Done' : 'Failed'}: ${esc(task.result.summary)}</div>`;
  }
  return `<div class="task-card">
    <div class="task-header">
      <span class="badge ${task.status}">${esc(task.status)}</span>
      <span class="priority">${esc(task.priority)}</span>
      <span class="task-title">#${task.sequence} ${esc(task.title)}</span>
      <span class="task-id">${esc(task.id)}</span>
    </div>
    ${details ? `<div class="task-details">${details}</div>` : ''}
  </div>`;
}

function esc(s) {
  if (!s) return '';
  const d = document.createElement('div');
  d.textContent = s;
  return d.innerHTML;
}

loadDashboard();
setInterval(loadDashboard, 30000);
</script>
</body>
</html>"""
