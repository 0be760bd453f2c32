"""HTML for the setup and success pages.

Pages are self-contained (inline CSS and JS) because the CSP only allows
'self' plus inline content. Every interpolated value goes through
``html.escape``.
"""

from __future__ import annotations

import html
import textwrap
from string import Template
from typing import Optional

from enroll.server.session import SessionMode

_STYLE = textwrap.dedent(
    """
    body { font-family: -apple-system, BlinkMacSystemFont, sans-serif; margin: 0; padding: 2rem; background: #f5f6f8; color: #1d1f23; }
    main { max-width: 34rem; margin: 0 auto; }
    section { background: #fff; border-radius: 10px; padding: 1.25rem; margin-bottom: 1rem; box-shadow: 0 1px 3px rgba(0,0,0,0.08); }
    label { display: block; font-weight: 600; margin: 0.75rem 0 0.25rem; }
    input { width: 100%; box-sizing: border-box; padding: 0.55rem; border: 1px solid #c9ccd3; border-radius: 6px; font-family: monospace; }
    button { margin-top: 1rem; margin-right: 0.5rem; padding: 0.55rem 1.1rem; border: 0; border-radius: 6px; cursor: pointer; background: #2d5bff; color: #fff; }
    button.secondary { background: #e4e7ee; color: #1d1f23; }
    button:disabled { opacity: 0.6; cursor: default; }
    .status { margin-top: 1rem; padding: 0.6rem; border-radius: 6px; display: none; }
    .status.error { display: block; background: #fdecec; color: #9b1c1c; }
    .status.success { display: block; background: #e8f7ee; color: #1d6b3a; }
    .account { display: flex; justify-content: space-between; align-items: center; padding: 0.4rem 0; border-bottom: 1px solid #eee; }
    .account small { color: #666; }
    code { background: #f0f1f4; padding: 0.1rem 0.3rem; border-radius: 4px; }
    """
)

_SETUP_TEMPLATE = Template(textwrap.dedent(
    """
    <!doctype html>
    <html lang="en">
    <head>
      <meta charset="utf-8" />
      <title>$title</title>
      <style>$style</style>
    </head>
    <body>
    <main>
      <h1>$title</h1>
      <section id="accounts-section">
        <h2>Stored accounts</h2>
        <div id="accounts"><p>Loading&hellip;</p></div>
      </section>
      <section>
        <h2>Add an account</h2>
        <form id="setup-form" autocomplete="off">
          <label for="account-name">Account name</label>
          <input id="account-name" name="account_name" placeholder="work" maxlength="64" />
          <label for="token">Personal access token</label>
          <input id="token" name="token" type="password" maxlength="4096" />
          <button type="button" id="validate" class="secondary">Test connection</button>
          <button type="submit" id="submit">Save</button>
          $done_button
        </form>
        <div id="status" class="status"></div>
      </section>
      <input type="hidden" id="csrfToken" value="$csrf_token" />
    </main>
    <script>
      const csrf = document.getElementById('csrfToken').value;
      const statusEl = document.getElementById('status');

      function escapeHtml(str) {
        const div = document.createElement('div');
        div.textContent = str;
        return div.innerHTML;
      }

      function showStatus(kind, message) {
        statusEl.className = 'status ' + kind;
        statusEl.textContent = message;
      }

      function payload() {
        return JSON.stringify({
          account_name: document.getElementById('account-name').value,
          token: document.getElementById('token').value,
        });
      }

      async function post(path, body) {
        const resp = await fetch(path, {
          method: 'POST',
          headers: { 'Content-Type': 'application/json', 'X-CSRF-Token': csrf },
          body: body,
        });
        let data = {};
        try { data = await resp.json(); } catch (e) { data = { success: false, error: 'Unexpected response' }; }
        return data;
      }

      async function loadAccounts() {
        const container = document.getElementById('accounts');
        try {
          const resp = await fetch('/accounts');
          const data = await resp.json();
          if (!data.accounts.length) {
            container.innerHTML = '<p>No accounts yet.</p>';
            return;
          }
          container.innerHTML = data.accounts.map(a =>
            '<div class="account"><span>' + escapeHtml(a.name) +
            ' <small>' + escapeHtml(a.createdAt || '') + '</small></span>' +
            '<button type="button" class="secondary" data-name="' + escapeHtml(a.name) + '">Remove</button></div>'
          ).join('');
          container.querySelectorAll('button[data-name]').forEach(btn => {
            btn.addEventListener('click', () => removeAccount(btn.dataset.name));
          });
        } catch (e) {
          container.innerHTML = '<p>Could not load accounts.</p>';
        }
      }

      async function removeAccount(name) {
        const data = await post('/remove-account', JSON.stringify({ name: name }));
        if (data.success) {
          showStatus('success', 'Removed ' + name);
        } else {
          showStatus('error', data.error || 'Removal failed');
        }
        loadAccounts();
      }

      document.getElementById('validate').addEventListener('click', async () => {
        showStatus('success', 'Testing connection...');
        const data = await post('/validate', payload());
        showStatus(data.success ? 'success' : 'error', data.success ? data.message : data.error);
      });

      document.getElementById('setup-form').addEventListener('submit', async (ev) => {
        ev.preventDefault();
        const button = document.getElementById('submit');
        button.disabled = true;
        const data = await post('/submit', payload());
        button.disabled = false;
        if (data.success) {
          window.location.href = '/success';
        } else {
          showStatus('error', data.error);
        }
      });

      const done = document.getElementById('done');
      if (done) {
        done.addEventListener('click', async () => {
          await post('/complete', '{}');
          showStatus('success', 'All done. You can close this window.');
        });
      }

      loadAccounts();
    </script>
    </body>
    </html>
    """
))

_SUCCESS_TEMPLATE = Template(textwrap.dedent(
    """
    <!doctype html>
    <html lang="en">
    <head>
      <meta charset="utf-8" />
      <title>Setup complete</title>
      <style>$style</style>
    </head>
    <body>
    <main>
      <section>
        <h1>Successfully connected</h1>
        $body
        <p>You can close this window and return to the terminal.</p>
      </section>
    </main>
    <script>
      fetch('/complete', {
        method: 'POST',
        headers: { 'X-CSRF-Token': '$csrf_token' }
      });
    </script>
    </body>
    </html>
    """
))


def render_setup_page(csrf_token: str, mode: SessionMode) -> str:
    if mode is SessionMode.MANAGE:
        title = "Manage accounts"
        done_button = '<button type="button" id="done" class="secondary">Done</button>'
    else:
        title = "Connect your account"
        done_button = ""
    return _SETUP_TEMPLATE.substitute(
        title=html.escape(title),
        style=_STYLE,
        csrf_token=html.escape(csrf_token, quote=True),
        done_button=done_button,
    )


def render_success_page(csrf_token: str, account_name: Optional[str]) -> str:
    if account_name:
        name = html.escape(account_name)
        body = (
            f"<p>Credentials for <strong>{name}</strong> were saved.</p>"
            f"<p>See stored accounts with <code>enroll list</code>.</p>"
        )
    else:
        body = "<p>No account was saved in this session.</p>"
    return _SUCCESS_TEMPLATE.substitute(
        style=_STYLE,
        body=body,
        csrf_token=html.escape(csrf_token, quote=True),
    )
