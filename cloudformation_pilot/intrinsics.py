from cloudformation_pilot import util

from typing import Any, Callable, Dict, List, Optional, Set

import base64
import logging
import re

log = logging.getLogger('stack-pilot')

PSEUDO_PARAMETERS: Dict[str, Any] = {
    'AWS::AccountId': '123456789012',
    'AWS::NotificationARNs': ['arn:aws:sns:us-east-1:123456789012:MyTopic'],
    'AWS::NoValue': None,
    'AWS::Region': 'ap-southeast-2',
    'AWS::StackId': 'arn:aws:cloudformation:us-east-1:123456789012:stack/MyStack/1c2fa620-982a-11e3-aff7-50e2416294e0',
    'AWS::StackName': 'YOUR_STACK_NAME',
}

UNRESOLVED_REF_PREFIX = 'REF: '

SUB_VARIABLE_RE = re.compile(r'\$\{([^}]*)\}')

IntrinsicHandler = Callable[['IntrinsicProcessor', str, Any], Any]


def ref_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if isinstance(operand, str):
        if operand in PSEUDO_PARAMETERS:
            return PSEUDO_PARAMETERS[operand]
        parameter = processor.parameters.get(operand)
        if isinstance(parameter, dict) and 'Default' in parameter:
            return parameter['Default']
    return f'{UNRESOLVED_REF_PREFIX}{operand}'


def import_value_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    return {'Fn::ImportValue': operand}


def join_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if not isinstance(operand, list) or len(operand) != 2 or not isinstance(operand[0], str):
        raise util.TemplateParseError(f'Fn::Join expects [delimiter, [values]], got {operand!r}')
    delimiter, values = operand
    if not isinstance(values, list):
        return {name: operand}
    if any(isinstance(xv, (dict, list)) for xv in values):
        return {name: operand}
    return delimiter.join('' if xv is None else scalar_to_string(xv) for xv in values)


def select_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if not isinstance(operand, list) or len(operand) != 2:
        raise util.TemplateParseError(f'Fn::Select expects [index, [values]], got {operand!r}')
    index, values = operand
    if not isinstance(values, list):
        return {name: operand}
    try:
        index = int(index)
    except (TypeError, ValueError):
        raise util.TemplateParseError(f'Fn::Select index {index!r} is not a number') from None
    if index < 0 or index >= len(values):
        raise util.TemplateParseError(f'Fn::Select index {index} is out of range for {len(values)} values')
    return values[index]


def split_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if not isinstance(operand, list) or len(operand) != 2 or not isinstance(operand[0], str):
        raise util.TemplateParseError(f'Fn::Split expects [delimiter, source], got {operand!r}')
    delimiter, source = operand
    if not isinstance(source, str):
        return {name: operand}
    return source.split(delimiter)


def find_in_map_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if not isinstance(operand, list) or len(operand) not in (3, 4):
        raise util.TemplateParseError(f'Fn::FindInMap expects [map, top key, second key], got {operand!r}')
    map_name, top_key, second_key = operand[:3]
    try:
        return processor.mappings[map_name][top_key][second_key]
    except (KeyError, TypeError):
        if len(operand) == 4 and isinstance(operand[3], dict) and 'DefaultValue' in operand[3]:
            return operand[3]['DefaultValue']
        log.debug(f'Mapping {map_name}.{top_key}.{second_key} can not be resolved, leaving it as is')
        return {name: operand}


def get_azs_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    region = operand if isinstance(operand, str) and operand != '' else PSEUDO_PARAMETERS['AWS::Region']
    return [f'{region}{xz}' for xz in ('a', 'b', 'c')]


def base64_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if not isinstance(operand, str):
        return {name: operand}
    return base64.b64encode(operand.encode('utf-8')).decode('ascii')


def equals_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if not isinstance(operand, list) or len(operand) != 2:
        raise util.TemplateParseError(f'Fn::Equals expects two values, got {operand!r}')
    left, right = operand
    if left == right:
        return True
    if isinstance(left, (str, int, float, bool)) and isinstance(right, (str, int, float, bool)):
        return scalar_to_string(left) == scalar_to_string(right)
    return False


def not_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    if not isinstance(operand, list) or len(operand) != 1 or not isinstance(operand[0], bool):
        raise util.TemplateParseError(f'Fn::Not expects a single condition, got {operand!r}')
    return not operand[0]


def and_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    return all(boolean_operands(name, operand))


def or_handler(processor: 'IntrinsicProcessor', name: str, operand: Any) -> Any:
    return any(boolean_operands(name, operand))


def boolean_operands(name: str, operand: Any) -> List[bool]:
    if not isinstance(operand, list) or len(operand) == 0 or not all(isinstance(xo, bool) for xo in operand):
        raise util.TemplateParseError(f'{name} expects a list of conditions, got {operand!r}')
    return operand


def scalar_to_string(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


DEFAULT_HANDLERS: Dict[str, IntrinsicHandler] = {
    'Ref': ref_handler,
    'Fn::ImportValue': import_value_handler,
    'Fn::Join': join_handler,
    'Fn::Select': select_handler,
    'Fn::Split': split_handler,
    'Fn::FindInMap': find_in_map_handler,
    'Fn::GetAZs': get_azs_handler,
    'Fn::Base64': base64_handler,
    'Fn::Equals': equals_handler,
    'Fn::Not': not_handler,
    'Fn::And': and_handler,
    'Fn::Or': or_handler,
}


class IntrinsicProcessor(object):
    """Resolves intrinsic functions in a decoded template without calling the cloud.

    Parameter overrides replace the defaults of the template's parameters before
    any Ref is resolved. Fn::Sub, Fn::If and Condition references need access to
    the rest of the template and are handled by the processor itself; every other
    intrinsic goes through the handler table, which callers may override.
    """

    def __init__(self, document: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None,
                 handler_overrides: Optional[Dict[str, IntrinsicHandler]] = None) -> None:
        self.document: Dict[str, Any] = document
        self.handlers: Dict[str, IntrinsicHandler] = dict(DEFAULT_HANDLERS)
        self.handlers.update(handler_overrides or dict())
        self.parameters: Dict[str, Any] = self.apply_overrides(document.get('Parameters') or dict(), overrides)
        self.mappings: Dict[str, Any] = document.get('Mappings') or dict()
        self.condition_definitions: Dict[str, Any] = document.get('Conditions') or dict()
        self.conditions: Dict[str, bool] = dict()
        self.evaluating: Set[str] = set()

    def apply_overrides(self, parameters: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(parameters, dict):
            raise util.TemplateParseError('Parameters section must be a mapping')
        u = {k: dict(v) if isinstance(v, dict) else v for k, v in parameters.items()}
        for k, v in (overrides or dict()).items():
            if isinstance(u.get(k), dict):
                u[k]['Default'] = v
            else:
                u[k] = {'Default': v}
        return u

    def evaluate_conditions(self) -> Dict[str, bool]:
        if not isinstance(self.condition_definitions, dict):
            raise util.TemplateParseError('Conditions section must be a mapping')
        for xc in self.condition_definitions:
            self.condition(xc)
        return dict(self.conditions)

    def condition(self, name: Any) -> bool:
        if not isinstance(name, str) or name not in self.condition_definitions:
            raise util.TemplateParseError(f'Condition {name!r} is not defined in the template')
        if name in self.conditions:
            return self.conditions[name]
        if name in self.evaluating:
            raise util.TemplateParseError(f'Condition {name} refers to itself')
        self.evaluating.add(name)
        value = self.process(self.condition_definitions[name])
        self.evaluating.discard(name)
        if not isinstance(value, bool):
            raise util.TemplateParseError(f'Condition {name} does not evaluate to a boolean')
        self.conditions[name] = value
        return value

    def is_intrinsic(self, node: Any) -> bool:
        if not isinstance(node, dict) or len(node) != 1:
            return False
        key = next(iter(node))
        return key in self.handlers or key in ('Fn::Sub', 'Fn::If', 'Condition')

    def process(self, node: Any) -> Any:
        if isinstance(node, list):
            u = list()
            for xn in node:
                value = self.process(xn)
                if value is None and self.is_intrinsic(xn):
                    continue
                u.append(value)
            return u
        if not isinstance(node, dict):
            return node
        if len(node) == 1:
            key, operand = next(iter(node.items()))
            if key == 'Fn::If':
                return self.process_if(operand)
            if key == 'Condition' and isinstance(operand, str):
                return self.condition(operand)
            if key == 'Fn::Sub':
                return self.process_sub(self.process(operand))
            if key in self.handlers:
                return self.handlers[key](self, key, self.process(operand))
        u = dict()
        for k, v in node.items():
            value = self.process(v)
            if value is None and self.is_intrinsic(v):
                continue
            u[k] = value
        return u

    def process_if(self, operand: Any) -> Any:
        if not isinstance(operand, list) or len(operand) != 3:
            raise util.TemplateParseError(f'Fn::If expects [condition, value if true, value if false], got {operand!r}')
        return self.process(operand[1] if self.condition(operand[0]) else operand[2])

    def resolve_ref(self, name: str) -> Any:
        return self.handlers['Ref'](self, 'Ref', name)

    def process_sub(self, operand: Any) -> Any:
        if isinstance(operand, str):
            text, variables = operand, dict()
        elif isinstance(operand, list) and len(operand) == 2 \
                and isinstance(operand[0], str) and isinstance(operand[1], dict):
            text, variables = operand
        else:
            raise util.TemplateParseError(f'Fn::Sub expects a string or [string, variables], got {operand!r}')

        def substitute(m):
            expression = m.group(1)
            if expression.startswith('!'):
                return '${' + expression[1:] + '}'
            if expression in variables:
                value = variables[expression]
                if isinstance(value, (str, int, float, bool)):
                    return scalar_to_string(value)
                return m.group(0)
            if '.' in expression:
                return m.group(0)
            value = self.resolve_ref(expression)
            if value is None:
                return ''
            if isinstance(value, str) and value.startswith(UNRESOLVED_REF_PREFIX):
                return m.group(0)
            if isinstance(value, (str, int, float, bool)):
                return scalar_to_string(value)
            return m.group(0)

        return SUB_VARIABLE_RE.sub(substitute, text)
