"""
Commeta Engine

Conversational code-change assistant. A remote user clones a repository,
asks the code agent for an edit, reviews it, commits, pushes and deploys,
one short chat turn at a time.

Components:
- Credential store: encrypted per-identity secrets (GitHub, Vercel)
- Repo registry: durable cloned-repository records with an active pointer
- Repo cache: per-identity GitHub repository list with fuzzy resolution
- Session store: conversation phase, history buffer, per-identity locks
- Process runner: argv-only subprocess supervision with failure classification
- Tools: git, janito (code agent), vercel (deployment)
- Commit messages: deterministic conventional-commit synthesis
- Router: ordered rule table (token > confirmation > grammar > clone > AI)

Channels:
- Telegram bot (chat_bot package)
- HTTP API (commeta.main)
"""

__version__ = "0.4.0"

SERVICE_NAME = "Commeta"
