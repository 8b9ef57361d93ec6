"""
Rules files decide whether a calibration index entry can be used for an observation.

A rules file has one line per index column::

    # comment
    ORACTIME
    FILTER ==
    EXPTIME ~ 0.5
    SPEED_GAIN eq Normal
    MODE =~ ^imag
    LOFREQ in $LOFREQ_MIN $LOFREQ_MAX

A bare column name records the column with no constraint. An operand that starts with
``$`` refers to a header value of the observation; an omitted operand means the header
value with the same name as the column. The order of the lines is the order of the
columns in the index file.
"""
import re

from oracdr.errors import ConfigurationError

# operators and how many operands they take
_operators = {
    "==": 1, "eq": 1,
    "!=": 1, "ne": 1,
    "<": 1, "<=": 1, ">": 1, ">=": 1,
    "~": 1,
    "=~": 1,
    "in": 2,
}

# operators where the operand may be left out and defaults to the column's own header value
_implicit_operand = ("==", "eq", "!=", "ne", "<", "<=", ">", ">=")


class RuleEvaluationError(ConfigurationError):
    """Raised when a rule cannot be evaluated for an entry (e.g. a text value compared numerically)."""
    pass


def _as_number(value):
    """
    Tries to interpret a header or index value as a number

    Args:
        value: any header value

    Returns:
        float or None: the number, or None if it isn't one
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_text(value):
    if isinstance(value, (tuple, list)):
        return ",".join(_as_text(v) for v in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def values_equal(a, b):
    """
    Compares two values numerically when both are numbers, otherwise as trimmed strings

    Args:
        a: first value
        b: second value

    Returns:
        bool: True if the values are the same
    """
    num_a = _as_number(a)
    num_b = _as_number(b)
    if num_a is not None and num_b is not None:
        return num_a == num_b
    return _as_text(a) == _as_text(b)


class Rule():
    """
    One line of a rules file

    Args:
        column (str): name of the index column the rule applies to
        op (str): operator, or None for an unconstrained column
        operands (tuple): operand tokens as written in the rules file

    Attributes:
        column (str): name of the index column
        op (str): operator (None if the column is not constrained)
        operands (tuple): operand tokens
    """

    def __init__(self, column, op=None, operands=()):
        self.column = column
        self.op = op
        operands = tuple(operands)

        if op is not None:
            if op not in _operators:
                raise ConfigurationError("Unknown operator '{0}' in rule for {1}".format(op, column))
            if len(operands) == 0 and op in _implicit_operand:
                operands = ("$" + column,)
            if len(operands) != _operators[op]:
                raise ConfigurationError("Rule '{0} {1}' needs {2} operand(s), got {3}"
                                         .format(column, op, _operators[op], len(operands)))
            if op == "=~" and not operands[0].startswith("$"):
                try:
                    re.compile(operands[0])
                except re.error as e:
                    raise ConfigurationError("Bad regular expression in rule for {0}: {1}".format(column, e))
        elif len(operands) > 0:
            raise ConfigurationError("Rule for {0} has operands but no operator".format(column))

        self.operands = operands

    def __repr__(self):
        return "Rule({0!r})".format(str(self))

    def __str__(self):
        return " ".join([self.column] + ([self.op] if self.op else []) + list(self.operands))

    @property
    def header_keys(self):
        """
        list: observation header keys this rule reads
        """
        keys = [token[1:] for token in self.operands if token.startswith("$")]
        if self.op == "~":
            keys.append(self.column)
        return keys

    def _resolve(self, token, thing):
        if token.startswith("$"):
            return thing[token[1:]]
        return token

    def check(self, value, thing):
        """
        Evaluates the rule for one index value against the observation

        Args:
            value: value of this column in the index entry
            thing (Mapping): merged observation header

        Returns:
            bool: True if the entry passes this rule. A rule that needs a header value the
                  observation does not have does not pass.
        """
        if self.op is None:
            return True

        for key in self.header_keys:
            if key not in thing or thing[key] is None:
                return False

        operands = [self._resolve(token, thing) for token in self.operands]

        if self.op in ("==", "eq"):
            return values_equal(value, operands[0])
        if self.op in ("!=", "ne"):
            return not values_equal(value, operands[0])
        if self.op == "=~":
            try:
                return re.search(str(operands[0]), _as_text(value)) is not None
            except re.error as e:
                raise RuleEvaluationError("Bad regular expression '{0}' in rule for {1}: {2}"
                                          .format(operands[0], self.column, e))

        # everything else is numeric
        number = _as_number(value)
        if number is None:
            raise RuleEvaluationError("Index value '{0}' of {1} is not a number".format(value, self.column))
        numeric_operands = [_as_number(op) for op in operands]
        if any(op is None for op in numeric_operands):
            raise RuleEvaluationError("Rule '{0}' has a non-numeric operand {1}".format(self, operands))

        if self.op == "~":
            return abs(number - _as_number(thing[self.column])) < numeric_operands[0]
        if self.op == "in":
            low, high = numeric_operands
            return low <= number <= high
        if self.op == "<":
            return number < numeric_operands[0]
        if self.op == "<=":
            return number <= numeric_operands[0]
        if self.op == ">":
            return number > numeric_operands[0]
        return number >= numeric_operands[0]


class RuleSet():
    """
    Ordered conjunction of rules read from a rules file

    Args:
        rules (list): list of oracdr.rules.Rule
        filepath (str): [optional] file the rules were read from

    Attributes:
        rules (list): the rules in file order
        filepath (str): file the rules were read from
    """

    def __init__(self, rules, filepath=None):
        self.rules = list(rules)
        self.filepath = filepath

        seen = set()
        for rule in self.rules:
            if rule.column in seen:
                raise ConfigurationError("Column {0} appears twice in rules file {1}".format(rule.column, filepath))
            seen.add(rule.column)

    @property
    def columns(self):
        """
        list: the index columns defined by these rules, in order
        """
        return [rule.column for rule in self.rules]

    def __len__(self):
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def check(self, entry, thing):
        """
        Checks an index entry against every rule

        Args:
            entry (dict): index entry values keyed by column
            thing (Mapping): merged observation header

        Returns:
            tuple:
                ok (bool):
                    True if every rule passes
                failed (oracdr.rules.Rule):
                    first rule that failed, or None
        """
        for rule in self.rules:
            if rule.column not in entry or entry[rule.column] is None:
                raise RuleEvaluationError("Index entry has no value for column {0}".format(rule.column))
            if not rule.check(entry[rule.column], thing):
                return False, rule
        return True, None


def parse_rules(filepath):
    """
    Reads a rules file

    Args:
        filepath (str): path to the rules file

    Returns:
        oracdr.rules.RuleSet: the parsed rules
    """
    rules = []
    try:
        with open(filepath, "r") as f:
            lines = f.readlines()
    except OSError as e:
        raise ConfigurationError("Could not read rules file {0}: {1}".format(filepath, e))

    for line in lines:
        line = line.strip()
        if len(line) == 0 or line.startswith("#"):
            continue
        tokens = line.split()
        column = tokens[0]
        op = tokens[1] if len(tokens) > 1 else None
        rules.append(Rule(column, op, tokens[2:]))

    return RuleSet(rules, filepath=filepath)
