import html
import base64
import urllib.parse

from asyshare.lister import DirectoryListing, display_name

LISTING_HEAD = '''<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Index of /'''

LISTING_STYLE = '''</title>
    <style>
        body { font-family: 'Segoe UI', system-ui, sans-serif; margin: 0; padding: 20px; background: #f8fafc; color: #1e293b; }
        .container { max-width: 960px; margin: 0 auto; background: #ffffff; border: 1px solid #e2e8f0; border-radius: 8px; }
        .breadcrumb { padding: 16px 24px; border-bottom: 1px solid #e2e8f0; font-weight: 500; }
        .section { padding: 16px 24px; border-bottom: 1px solid #e2e8f0; }
        table { width: 100%; border-collapse: collapse; }
        td { padding: 8px 24px; border-bottom: 1px solid #f1f5f9; }
        a { color: #2563eb; text-decoration: none; }
        a:hover { color: #1d4ed8; }
        .dir { font-weight: 600; }
        .empty { padding: 16px 24px; color: #64748b; }
        #uploadStatus { margin-left: 12px; color: #64748b; }
    </style>
</head>
'''

LISTING_SCRIPT = '''
    <script>
        function encodeName(name) {
            const bytes = new TextEncoder().encode(name);
            let binary = '';
            bytes.forEach(b => binary += String.fromCharCode(b));
            return btoa(binary);
        }
        async function uploadFiles() {
            const input = document.getElementById('fileInput');
            const status = document.getElementById('uploadStatus');
            const targetDir = document.body.dataset.dir;
            for (const file of input.files) {
                status.textContent = 'Uploading ' + file.name + '...';
                const resp = await fetch('/upload', {
                    method: 'POST',
                    headers: {
                        'X-Target-Dir-B64': targetDir,
                        'X-Target-File-B64': encodeName(file.name),
                    },
                    body: file,
                });
                if (!resp.ok) {
                    status.textContent = file.name + ': ' + (await resp.text());
                    return;
                }
            }
            window.location.reload();
        }
    </script>
'''

LISTING_TAIL = '''</body>
</html>
'''


def _href(url:str) -> str:
    # names that are not valid UTF-8 on disk carry surrogate escapes
    return html.escape(urllib.parse.quote(url, errors='surrogateescape'), quote=True)


def _text(name:str) -> str:
    return html.escape(display_name(name))


def _dir_token(current:str) -> str:
    # base64 of the path bytes, posted back as X-Target-Dir-B64
    return base64.b64encode(current.encode('utf-8', errors='surrogateescape')).decode('ascii')


def render_listing(listing:DirectoryListing) -> str:
    """Renders the single directory listing page."""
    current = listing.current_path
    parts = [LISTING_HEAD, _text(current), LISTING_STYLE]

    parts.append('<body data-dir="%s">\n    <div class="container">\n' % _dir_token(current))
    parts.append('        <div class="breadcrumb"><a href="/">Root</a>')
    walked = ''
    for segment in [x for x in current.split('/') if x]:
        walked = walked + '/' + segment
        parts.append(' / <a href="%s">%s</a>' % (_href(walked), _text(segment)))
    parts.append('</div>\n')

    if listing.parent_path is not None:
        parts.append('        <div class="section"><a href="%s">&#11014; Parent directory</a></div>\n' % _href(listing.parent_path))

    parts.append(
        '        <div class="section">'
        '<input type="file" id="fileInput" multiple> '
        '<button onclick="uploadFiles()">Upload</button>'
        '<span id="uploadStatus"></span></div>\n'
    )

    if len(listing.entries) == 0:
        parts.append('        <div class="empty">This directory is empty.</div>\n')
    else:
        parts.append('        <table>\n')
        for entry in listing.entries:
            if entry.is_dir is True:
                parts.append('            <tr><td class="dir">&#128193; <a href="%s/">%s/</a></td></tr>\n' % (_href(entry.url), _text(entry.name)))
            else:
                parts.append('            <tr><td>&#128196; <a href="%s">%s</a></td></tr>\n' % (_href(entry.url), _text(entry.name)))
        parts.append('        </table>\n')

    parts.append('    </div>\n')
    parts.append(LISTING_SCRIPT)
    parts.append(LISTING_TAIL)
    return ''.join(parts)
