from .compiler import CompiledTemplate, compile_template
from notification_engine.templates.engine import SMS_MAX_LENGTH, TemplateEngine, truncate
from .model import ChannelTemplate, Template

__all__ = [
    "SMS_MAX_LENGTH",
    "ChannelTemplate",
    "CompiledTemplate",
    "Template",
    "TemplateEngine",
    "compile_template",
    "truncate",
]
