from cloudformation_pilot import util, intrinsics

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from colorama import Fore, Style

import json
import logging
import yaml

log = logging.getLogger('stack-pilot')


class TemplateLoader(yaml.SafeLoader):
    pass


def construct_short_form(loader, tag_suffix, node):
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    if tag_suffix == 'Ref' or tag_suffix == 'Condition':
        return {tag_suffix: value}
    if tag_suffix == 'GetAtt' and isinstance(value, str):
        value = value.split('.', 1)
    return {f'Fn::{tag_suffix}': value}


TemplateLoader.add_multi_constructor('!', construct_short_form)
TemplateLoader.add_constructor('tag:yaml.org,2002:timestamp', yaml.SafeLoader.construct_yaml_str)


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            log.debug(f'Can not convert [{value}] to an integer, using 0')
    return 0


def to_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            log.debug(f'Can not convert [{value}] to a number, using 0')
    return 0.0


@dataclass
class ParameterSpec:
    type: str = ''
    description: str = ''
    default: Any = None
    allowed_pattern: str = ''
    allowed_values: List[Any] = field(default_factory=list)
    constraint_description: str = ''
    max_length: int = 0
    min_length: int = 0
    max_value: float = 0.0
    min_value: float = 0.0
    no_echo: bool = False

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> 'ParameterSpec':
        no_echo = body.get('NoEcho', False)
        if isinstance(no_echo, str):
            no_echo = no_echo.lower() == 'true'
        return cls(
            type=body.get('Type', ''),
            description=body.get('Description', ''),
            default=body.get('Default'),
            allowed_pattern=body.get('AllowedPattern', ''),
            allowed_values=list(body.get('AllowedValues') or list()),
            constraint_description=body.get('ConstraintDescription', ''),
            max_length=to_int(body.get('MaxLength')),
            min_length=to_int(body.get('MinLength')),
            max_value=to_float(body.get('MaxValue')),
            min_value=to_float(body.get('MinValue')),
            no_echo=bool(no_echo),
        )


@dataclass
class Resource:
    type: str = ''
    condition: str = ''
    properties: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> 'Resource':
        return cls(
            type=body.get('Type', ''),
            condition=body.get('Condition') or '',
            properties=body.get('Properties') or dict(),
            metadata=body.get('Metadata') or dict(),
        )


@dataclass
class TemplateOutput:
    value: Any = None
    description: str = ''
    export_name: str = ''

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> 'TemplateOutput':
        export = body.get('Export') or dict()
        return cls(
            value=body.get('Value'),
            description=body.get('Description', ''),
            export_name=export.get('Name', '') if isinstance(export, dict) else '',
        )


@dataclass
class TemplateRuleAssertion:
    assertion: Any = None
    assert_description: str = ''


@dataclass
class TemplateRule:
    condition: Any = None
    assertions: List[TemplateRuleAssertion] = field(default_factory=list)

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> 'TemplateRule':
        return cls(
            condition=body.get('RuleCondition', body.get('Condition')),
            assertions=[TemplateRuleAssertion(xa.get('Assert'), xa.get('AssertDescription', ''))
                        for xa in body.get('Assertions') or list() if isinstance(xa, dict)],
        )


@dataclass
class Template:
    version: str = ''
    description: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)
    transform: Union[None, str, List[str]] = None
    mappings: Dict[str, Any] = field(default_factory=dict)
    rules: Dict[str, TemplateRule] = field(default_factory=dict)
    parameters: Dict[str, ParameterSpec] = field(default_factory=dict)
    resources: Dict[str, Resource] = field(default_factory=dict)
    conditions: Dict[str, bool] = field(default_factory=dict)
    outputs: Dict[str, TemplateOutput] = field(default_factory=dict)

    def should_have_resource(self, resource: Resource) -> bool:
        if resource.condition != '':
            return self.conditions.get(resource.condition, False)
        return True


def decode_template(text: str) -> Dict[str, Any]:
    stripped = text.lstrip() if text is not None else ''
    if stripped == '':
        raise util.TemplateParseError('Template is empty')
    try:
        if stripped[0] == '{':
            body = json.loads(stripped)
        else:
            body = yaml.load(stripped, Loader=TemplateLoader)
    except (ValueError, yaml.YAMLError) as e:
        raise util.TemplateParseError(f'Template can not be decoded: {e}') from None
    if not isinstance(body, dict):
        raise util.TemplateParseError('Template must be a mapping at the top level')
    return body


def parse_transform(value: Any) -> Union[None, str, List[str]]:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return [xv for xv in value if isinstance(xv, str)]
    return None


def section(body: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = body.get(name)
    if value is None:
        return dict()
    if not isinstance(value, dict):
        raise util.TemplateParseError(f'{name} section must be a mapping')
    return value


def parse_template(text: str, overrides: Optional[Dict[str, Any]] = None,
                   handler_overrides: Optional[Dict[str, intrinsics.IntrinsicHandler]] = None) -> Template:
    body = decode_template(text)
    processor = intrinsics.IntrinsicProcessor(body, overrides, handler_overrides)
    conditions = processor.evaluate_conditions()
    processed = processor.process({k: v for k, v in body.items() if k != 'Conditions'})

    t = Template(
        version=str(processed.get('AWSTemplateFormatVersion') or ''),
        description=processed.get('Description') or '',
        metadata=section(processed, 'Metadata'),
        transform=parse_transform(processed.get('Transform')),
        mappings=section(processed, 'Mappings'),
        rules={k: TemplateRule.from_dict(v) for k, v in section(processed, 'Rules').items()
               if isinstance(v, dict)},
        parameters={k: ParameterSpec.from_dict(v) for k, v in section(processed, 'Parameters').items()
                    if isinstance(v, dict)},
        conditions=conditions,
        outputs={k: TemplateOutput.from_dict(v) for k, v in section(processed, 'Outputs').items()
                 if isinstance(v, dict)},
    )
    for k, v in section(processed, 'Resources').items():
        if not isinstance(v, dict):
            raise util.TemplateParseError(f'Resource {k} must be a mapping')
        r = Resource.from_dict(v)
        if r.condition != '' and r.condition not in conditions:
            raise util.TemplateParseError(f'Resource {k} refers to undefined condition {r.condition}')
        t.resources[k] = r
    log.debug(f'Parsed template with {len(t.resources)} resources and {len(t.conditions)} conditions')
    return t


def get_template_body(stack_name: str, overrides: Optional[Dict[str, Any]] = None,
                      ctx: Optional[util.OperationContext] = None) -> Template:
    ctx = ctx or util.background_context()
    c = util.session.client('cloudformation')
    ctx.check()
    log.debug(f'Retrieving template of stack {Fore.GREEN}{stack_name}{Style.RESET_ALL}')
    r = c.get_template(StackName=stack_name)
    body = r['TemplateBody']
    if not isinstance(body, str):
        body = json.dumps(body)
    return parse_template(body, overrides)
