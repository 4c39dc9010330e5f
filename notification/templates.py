"""
Jinja2 template provider reading templates from a directory tree.

Layout:
    <template_dir>/<template key>/<channel>[.<locale>].subject.j2
    <template_dir>/<template key>/<channel>[.<locale>].text.j2
    <template_dir>/<template key>/<channel>[.<locale>].html.j2
    <template_dir>/_fallback/<channel>.(subject|text|html).j2

The template key is the type's ``template_config[channel]`` when set,
otherwise the type name. Templates run in a sandbox since type
administrators author them.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from notification.interfaces import (
    NotificationDataContext,
    RenderOptions,
    Template,
    TemplateProvider,
)
from notification.models import RenderedContent, RenderResult

logger = logging.getLogger(__name__)

FALLBACK_KEY = "_fallback"
TEMPLATE_PARTS = ('subject', 'text', 'html')


def _locale_candidates(channel: str, locale: Optional[str]) -> List[str]:
    candidates = []
    if locale:
        candidates.append(f"{channel}.{locale}")
        language = locale.replace('_', '-').split('-', 1)[0]
        if language and language != locale:
            candidates.append(f"{channel}.{language}")
    candidates.append(channel)
    return candidates


def _entity_reference(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    entity = data.get('entity')
    if isinstance(entity, dict) and entity.get('type'):
        return {'type': entity.get('type'), 'id': entity.get('id')}
    if data.get('entity_type'):
        return {'type': data.get('entity_type'), 'id': data.get('entity_id')}
    return None


class FilesystemTemplateProvider(TemplateProvider):
    def __init__(self, template_dir: Optional[str]):
        self.template_dir = Path(template_dir) if template_dir else None
        self._text_env = SandboxedEnvironment(autoescape=False, trim_blocks=True, lstrip_blocks=True)
        self._html_env = SandboxedEnvironment(autoescape=True, trim_blocks=True, lstrip_blocks=True)

    def _read_parts(self, key: str, stem: str) -> Dict[str, str]:
        parts = {}
        folder = self.template_dir / key
        for part in TEMPLATE_PARTS:
            path = folder / f"{stem}.{part}.j2"
            if path.is_file():
                parts[part] = path.read_text(encoding='utf-8')
        return parts

    def get_template(self, type_key: str, channel: str, locale: Optional[str] = None) -> Optional[Template]:
        if self.template_dir is None or not type_key:
            return None
        # Keys come from admin-authored config; never leave the template root
        if '/' in type_key or '\\' in type_key or type_key.startswith('.'):
            logger.warning(f"Rejected template key {type_key!r}")
            return None

        for stem in _locale_candidates(channel, locale):
            parts = self._read_parts(type_key, stem)
            if parts:
                stem_locale = stem.split('.', 1)[1] if '.' in stem else None
                return Template(key=type_key, channel=channel, locale=stem_locale, **parts)
        return None

    def get_fallback_template(self, channel: str) -> Optional[Template]:
        return self.get_template(FALLBACK_KEY, channel)

    def render_template(self, template: Template, data: Dict[str, Any], options: RenderOptions) -> RenderResult:
        data = data or {}

        if options.check_data_access is not None:
            entity = _entity_reference(data)
            if entity is not None:
                context = NotificationDataContext(
                    notification_type=template.key,
                    entity_type=entity['type'],
                    entity_id=entity['id'],
                    data=data,
                )
                if not options.check_data_access(context):
                    logger.info(f"Render of {template.key}/{template.channel} refused: no data access")
                    return RenderResult(has_content=False, reason='no_data_access')

        variables = dict(data)
        variables.setdefault('user', options.user)
        variables.setdefault('locale', options.locale or template.locale)

        try:
            subject = self._render(self._text_env, template.subject, variables)
            text = self._render(self._text_env, template.text, variables)
            html = self._render(self._html_env, template.html, variables)
        except jinja2.TemplateError as e:
            logger.error(f"Template {template.key}/{template.channel} failed to render: {e}")
            return RenderResult(has_content=False, reason='empty_content')

        if not text and not html:
            return RenderResult(has_content=False, reason='empty_content')

        title = subject or str(data.get('title') or '')
        return RenderResult(
            has_content=True,
            content=RenderedContent(title=title, text=text or '', html=html or None),
        )

    @staticmethod
    def _render(env: SandboxedEnvironment, source: Optional[str], variables: Dict[str, Any]) -> str:
        if not source:
            return ''
        return env.from_string(source).render(**variables).strip()
