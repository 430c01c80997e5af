"""Resource listing page."""

from html import escape
from string import Template

from portal.bootstrap.config import REAL_IP_HEADER
from portal.domain.http_types import HttpRequest
from portal.pipeline.middleware import Handler, write_error
from portal.upstream.client import ResourceClient
from portal.upstream.errors import UpstreamError
from portal.upstream.models import Resource

PAGE_TEMPLATE = Template(
    """<!DOCTYPE html>
<html lang="en" data-theme="caramellatte">
<head>
	<meta charset="UTF-8">
	<meta name="viewport" content="width=device-width, initial-scale=1.0">
	<title>Selfservice Portal</title>
	<link href="https://cdn.jsdelivr.net/npm/daisyui@5" rel="stylesheet" type="text/css" />
	<script src="https://cdn.jsdelivr.net/npm/@tailwindcss/browser@4"></script>
	<link href="https://cdn.jsdelivr.net/npm/daisyui@5/themes.css" rel="stylesheet" type="text/css" />
	<script src="https://cdn.jsdelivr.net/npm/htmx.org@2.0.7/dist/htmx.js" integrity="sha384-yWakaGAFicqusuwOYEmoRjLNOC+6OFsdmwC2lbGQaRELtuVEqNzt11c2J711DeCZ" crossorigin="anonymous"></script>
</head>
<body>
	<div class="navbar bg-neutral text-neutral-content">
		<a class="btn btn-ghost text-xl">Selfservice Portal</a>
		<div class="bg-base-100 w-40 text-base-content flex justify-center rounded-sm">
			<p>$real_ip</p>
		</div>
	</div>
	<ul class="list bg-base-100 rounded-box shadow-md">
		<li class="p-4 pb-2 text-xs opacity-60 tracking-wide">Resources</li>
$rows
	</ul>
</body>
</html>
"""
)

ROW_TEMPLATE = Template(
    """		<li class="list-row">
			<div class="text-4xl font-thin opacity-30 tabular-nums">$index</div>
			<div class="list-col-grow">
				<div>$name</div>
				<div class="text-xs uppercase font-semibold opacity-60">$full_domain</div>
			</div>
			<button class="btn" id="register-$resource_id" hx-put="/register/$resource_id" hx-trigger="click" hx-swap="this">Register</button>
		</li>"""
)


def _text(value) -> str:
    return escape("" if value is None else str(value))


def render_home_page(real_ip: str, resources: list[Resource]) -> str:
    rows = "\n".join(
        ROW_TEMPLATE.substitute(
            index=index,
            name=_text(resource.name),
            full_domain=_text(resource.full_domain),
            resource_id=_text(resource.resource_id),
        )
        for index, resource in enumerate(resources)
    )
    return PAGE_TEMPLATE.substitute(real_ip=_text(real_ip), rows=rows)


def handle_home_page(client: ResourceClient) -> Handler:
    """List upstream resources with a register button for each."""

    def handler(writer, request: HttpRequest) -> None:
        if request.path != "/":
            write_error(writer, "404 page not found", 404)
            return

        try:
            resources = client.list_resources()
        except UpstreamError as error:
            write_error(writer, str(error), 500)
            return

        page = render_home_page(request.headers.get(REAL_IP_HEADER, ""), resources)
        writer.headers["Content-Type"] = "text/html"
        writer.write(page.encode())

    return handler
