"""Dashboard HTML with inline CSS and vanilla JS."""


def get_dashboard_html() -> str:
    return """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Task Relay</title>
<style>
  :root {
    --bg: #0d1117; --surface: #161b22; --border: #30363d;
    --text: #e6edf3; --text-muted: #8b949e; --text-dim: #6e7681;
    --ready: #8b949e; --awaiting: #d29922; --in-progress: #58a6ff;
    --done: #3fb950; --blocked: #f85149; --cancelled: #6e7681;
  }
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif;
         background: var(--bg); color: var(--text); line-height: 1.5; }
  .container { max-width: 960px; margin: 0 auto; padding: 24px 16px; }
  header { display: flex; justify-content: space-between; align-items: center;
           padding-bottom: 16px; border-bottom: 1px solid var(--border); margin-bottom: 24px; }
  header h1 { font-size: 20px; font-weight: 600; }
  header select { background: var(--surface); color: var(--text); border: 1px solid var(--border);
                  padding: 6px 12px; border-radius: 6px; font-size: 14px; }
  .project-info { background: var(--surface); border: 1px solid var(--border);
                  border-radius: 8px; padding: 16px; margin-bottom: 20px; }
  .project-info h2 { font-size: 16px; margin-bottom: 8px; }
  .project-meta { font-size: 13px; color: var(--text-muted); white-space: pre-wrap; }
  .summary { display: flex; gap: 16px; align-items: center; margin-bottom: 24px; flex-wrap: wrap; font-size: 14px; }
  .progress-bar { flex: 1; min-width: 120px; height: 8px; background: var(--surface);
                  border-radius: 4px; overflow: hidden; border: 1px solid var(--border); }
  .progress-bar .fill { height: 100%; background: var(--done); }
  .task-list { display: flex; flex-direction: column; gap: 2px; }
  .task-card { background: var(--surface); border: 1px solid var(--border); border-radius: 8px; padding: 12px 16px; }
  .task-header { display: flex; align-items: center; gap: 10px; }
  .badge { display: inline-block; padding: 2px 10px; border-radius: 12px; font-size: 11px;
           font-weight: 600; text-transform: uppercase; letter-spacing: 0.5px; }
  .badge.ready { color: var(--ready); }
  .badge.awaiting_human { color: var(--awaiting); }
  .badge.in_progress { color: var(--in-progress); }
  .badge.done { color: var(--done); }
  .badge.blocked { color: var(--blocked); }
  .badge.cancelled { color: var(--cancelled); }
  .task-title { font-weight: 600; font-size: 14px; }
  .task-id, .owner { font-size: 12px; color: var(--text-dim); font-family: monospace; }
  .task-details { margin-top: 6px; font-size: 13px; color: var(--text-muted); }
  .task-details code { background: var(--bg); padding: 1px 5px; border-radius: 3px; font-size: 12px; }
  .empty { text-align: center; padding: 48px; color: var(--text-muted); }
</style>
</head>
<body>
<div class="container">
  <header>
    <h1>Task Relay</h1>
    <select id="project-picker"><option value="">Loading...</option></select>
  </header>
  <div id="content">
    <div class="empty"><h3>Select a project</h3></div>
  </div>
</div>

<script>
let currentProject = null;

async function fetchJSON(path) {
  const res = await fetch(path);
  if (!res.ok) return null;
  return res.json();
}

async function loadProjects() {
  const picker = document.getElementById('project-picker');
  const projects = await fetchJSON('/api/projects');
  if (!projects || projects.length === 0) {
    picker.innerHTML = '<option value="">No projects</option>';
    return;
  }
  picker.innerHTML = projects.map(p => `<option value="${esc(p.id)}">${esc(p.name)} (${esc(p.id)})</option>`).join('');
  picker.addEventListener('change', () => {
    currentProject = picker.value || null;
    if (currentProject) loadDashboard(currentProject);
  });
  currentProject = projects[0].id;
  loadDashboard(currentProject);
}

async function loadDashboard(projectId) {
  const content = document.getElementById('content');
  const [project, tasks, summary] = await Promise.all([
    fetchJSON(`/api/projects/${projectId}`),
    fetchJSON(`/api/projects/${projectId}/tasks`),
    fetchJSON(`/api/projects/${projectId}/summary`),
  ]);
  if (!project) { content.innerHTML = '<div class="empty"><h3>Project not found</h3></div>'; return; }

  let html = `<div class="project-info"><h2>${esc(project.name)}</h2>
    <div class="project-meta">Routing: ${esc(project.routing.name)} v${esc(project.routing.version)}
${esc(project.workflow_instructions || '')}</div></div>`;

  if (summary) {
    const c = summary.counts;
    html += `<div class="summary">` +
      Object.keys(c).map(k => `<span class="badge ${k}">${c[k]} ${k.replace('_', ' ')}</span>`).join('') +
      `<div class="progress-bar"><div class="fill" style="width:${summary.progress_pct}%"></div></div>
      <span>${summary.progress_pct}%</span></div>`;
  }

  if (!tasks || tasks.length === 0) {
    html += '<div class="empty"><h3>No tasks yet</h3><p>Create tasks with <code>relay plan add</code></p></div>';
  } else {
    html += '<div class="task-list">' + tasks.map(renderTask).join('') + '</div>';
  }
  content.innerHTML = html;
}

function renderTask(task) {
  let details = '';
  if (task.waiting_reason) details += `<div>Waiting: ${esc(task.waiting_reason)}</div>`;
  if (task.depends_on.length > 0) {
    details += `<div>Depends on: ${task.depends_on.map(d => `<code>${esc(d)}</code>`).join(', ')}</div>`;
  }
  return `<div class="task-card">
    <div class="task-header">
      <span class="badge ${task.readiness}">${esc(task.readiness.replace('_', ' '))}</span>
      <span class="task-title">${esc(task.title)}</span>
      <span class="owner">${esc(task.owner)}</span>
      <span class="task-id">${esc(task.id)}</span>
    </div>
    ${details ? `<div class="task-details">${details}</div>` : ''}
  </div>`;
}

function esc(s) {
  if (s === null || s === undefined) return '';
  const d = document.createElement('div');
  d.textContent = String(s);
  return d.innerHTML;
}

loadProjects();
setInterval(() => { if (currentProject) loadDashboard(currentProject); }, 30000);
</script>
</body>
</html>"""
