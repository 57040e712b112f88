"""Default pipeline settings."""

DEFAULTS = {
    "port": 3000,
    "host": "0.0.0.0",
    "projects_root": "/tmp/projects",
    "default_project": "default-project",
    "base_branch": "main",
    "work_branch": "feat/generate-automatic",
    "remote_name": "origin",
    "agent_timeout": 300,
    "agent_max_attempts": 1,
    "agent_retry_backoff": 2,
    "hard_max_attempts": 5,   # absolute ceiling for agent retries
    "git_timeout": 120,
    "pr_timeout": 60,
    "kill_grace": 5,          # seconds between SIGTERM and SIGKILL
    "shutdown_grace": 30,
    "request_idle_timeout": 30,  # seconds an idle keep-alive connection is kept open
    "output_limit": 20000,    # characters of stage output returned over HTTP
    "capture_limit": 1_000_000,  # characters kept per child stream while it runs
    "commit_subject_max": 72,
    "bot_name": "Agent Webhook Bot",
    "bot_email": "bot@agent-webhook.local",
    "commit_trailer": "Generated automatically by agent-webhook",
    "git_command": "git",
    "pr_command": "gh",
    "agent_candidates": [
        "claude-code",
        "claude",
        "/usr/local/lib/node_modules/@anthropic-ai/claude-code/bin/claude-code",
        "/usr/local/lib/node_modules/@anthropic-ai/claude-code/bin/claude",
        "/app/node_modules/.bin/claude-code",
        "/app/node_modules/.bin/claude",
    ],
    "agent_args": ["--print", "--dangerously-skip-permissions"],
    "secret_env_vars": ["ANTHROPIC_API_KEY", "GITHUB_TOKEN", "GH_TOKEN", "WEBHOOK_SECRET"],
}
