# Doreen tracker configuration
#
"""Tracker configuration: a config.ini file with typed options.

Every option lives in a section of config.ini and is addressed by its
canonical name: the upper-cased setting for the [main] section, and
SECTION_SETTING for all other sections. A Config gives access to the
options as attributes or items::

    >>> config = CoreConfig()
    >>> config.SEARCH_PAGE_SIZE
    20
    >>> config['RDBMS_BACKEND'] = 'postgresql'

Values are converted and checked by the Option subclass when they are
set, so a bad value in config.ini fails at load time.
"""
__docformat__ = "restructuredtext"

import configparser
import logging, logging.config
import os
import sys
import time

### Exceptions

class ConfigurationError(Exception):
    pass

class NoConfigError(ConfigurationError):
    """The tracker home has no config.ini. Argument: the directory."""

    def __str__(self):
        return "No config.ini found in directory %s" % self.args[0]

class InvalidOptionError(ConfigurationError, KeyError, AttributeError):
    """Unknown option name, looked up as item or attribute."""

    def __str__(self):
        return "Unsupported configuration option: %s" % self.args[0]

class OptionValueError(ConfigurationError, ValueError):
    """A value the option can't take. Arguments: the Option, the value
    and optional lines of explanation.
    """

    def __str__(self):
        option, value = self.args[:2]
        lines = ["Invalid value for %s: %r" % (option.name, value)]
        lines.extend(self.args[2:])
        return "\n".join(lines)

class OptionUnsetError(ConfigurationError):
    """An option without value or default was read."""

    def __str__(self):
        return "%s is not set and has no default" % self.args[0].name

class _NoDefault:
    def __repr__(self):
        return "NO DEFAULT"
    __str__ = __repr__

NODEFAULT = _NoDefault()

### Options

class Option:
    """One setting of config.ini.

    - config: the Config the option belongs to
    - section, setting: where it lives in config.ini (setting is lower
      case)
    - name: canonical upper-case name used for attribute access
    - default: the default as written in config.ini, or NODEFAULT
    - description: comment written above the setting

    Subclasses convert between the config.ini text and the Python value
    in str2value() and _value2str().
    """

    # appended to the description of every option of the class
    class_description = None

    def __init__(self, config, section, setting, default=NODEFAULT,
            description=None):
        self.config = config
        self.section = section
        self.setting = setting.lower()
        if section == "main":
            self.name = setting.upper()
        else:
            self.name = "%s_%s" % (section.upper(), setting.upper())
        self.default = default
        self.description = description
        if default is NODEFAULT:
            self._default_value = NODEFAULT
        else:
            self._default_value = self.str2value(default)
        self._value = self._default_value

    def __repr__(self):
        return "<%s %s: %s>" % (self.__class__.__name__, self.name,
            self.value2str(current=1))

    def str2value(self, value):
        return value

    def _value2str(self, value):
        return str(value)

    def value2str(self, value=NODEFAULT, current=0):
        """The config.ini text of 'value', or of the current value."""
        if current:
            value = self._value
        if value is NODEFAULT:
            return str(value)
        return self._value2str(value)

    def get(self):
        if self._value is NODEFAULT:
            raise OptionUnsetError(self)
        return self._value

    def set(self, value):
        self._value = self.str2value(value)

    def reset(self):
        self._value = self._default_value

    def isset(self):
        return self._value is not NODEFAULT

    def format(self):
        """The lines of config.ini for this option, with its comment."""
        comment = []
        for text in (self.description, self.class_description):
            if text:
                comment.extend(text.split("\n"))
        lines = ["# %s" % line for line in comment]
        lines.append("# Default: %s" % self.value2str(self._default_value))
        setting = "%s = %s" % (self.setting, self.value2str(current=1))
        if not self.isset():
            setting = "#" + setting
        lines.append(setting)
        return "\n".join(lines) + "\n"

    def load_ini(self, parser):
        if parser.has_option(self.section, self.setting):
            self.set(parser.get(self.section, self.setting))

class BooleanOption(Option):

    class_description = "Allowed values: yes, no"

    def _value2str(self, value):
        return value and "yes" or "no"

    def str2value(self, value):
        if not isinstance(value, str):
            return bool(value)
        text = value.strip().lower()
        if text in ("yes", "true", "on", "1"):
            return True
        if text in ("no", "false", "off", "0"):
            return False
        raise OptionValueError(self, value, self.class_description)

class WordListOption(Option):

    class_description = "Allowed values: comma-separated list of words"

    def _value2str(self, value):
        return ",".join([str(v) for v in value])

    def str2value(self, value):
        if isinstance(value, (list, tuple)):
            return list(value)
        return [w.strip() for w in value.split(",") if w.strip()]

class IntegerListOption(WordListOption):

    class_description = "Allowed values: comma-separated list of integers"

    def str2value(self, value):
        try:
            return [int(v) for v in WordListOption.str2value(self, value)]
        except ValueError:
            raise OptionValueError(self, value, self.class_description)

class ChoiceOption(Option):
    """One of the words in 'allowed', compared case-insensitively."""

    allowed = ()

    def __init__(self, *args, **kwargs):
        self.class_description = "Allowed values: %s" % ", ".join(
            self.allowed)
        Option.__init__(self, *args, **kwargs)

    def str2value(self, value):
        text = value.strip().lower()
        if text not in self.allowed:
            raise OptionValueError(self, value, self.class_description)
        return text

class IsolationOption(ChoiceOption):
    allowed = ("read uncommitted", "read committed", "repeatable read",
        "serializable")

class BackendOption(ChoiceOption):
    allowed = ("sqlite", "postgresql", "mysql")

class FilePathOption(Option):
    """A path; relative paths are taken relative to the tracker home."""

    class_description = "The path may be either absolute or relative\n" \
        "to the directory containing this config file."

    def get(self):
        path = Option.get(self)
        if path and not os.path.isabs(path):
            path = os.path.join(self.config.HOME, path)
        return path

class IntegerNumberOption(Option):

    minimum = None

    def str2value(self, value):
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise OptionValueError(self, value, "Integer number required")
        if self.minimum is not None and number < self.minimum:
            raise OptionValueError(self, value,
                "Integer number of at least %d required" % self.minimum)
        return number

class PositiveIntegerNumberOption(IntegerNumberOption):
    minimum = 1

class NullableOption(Option):
    """An empty setting stands for None."""

    def str2value(self, value):
        if value == "":
            return None
        return value

    def _value2str(self, value):
        if value is None:
            return ""
        return str(value)

### Layout of config.ini
# (section, options[, section comment]); each option is
# (Option class, setting, default, description)
SETTINGS = (
    ("main", (
        (FilePathOption, "database", "db",
            "Database directory path.\n"
            "The SQLite backend keeps its database file here."),
        (BooleanOption, "debug", "no",
            "Include the failing SQL statement in store error messages."),
    )),
    ("rdbms", (
        (BackendOption, "backend", "sqlite",
            "Database backend."),
        (Option, "name", "doreen",
            "Name of the database to use."),
        (NullableOption, "host", "localhost",
            "Database server host."),
        (NullableOption, "port", "",
            "TCP port number of the database server.\n"
            "Leave empty for the backend default (PostgreSQL 5432,\n"
            "MySQL 3306)."),
        (NullableOption, "user", "doreen",
            "Database user name."),
        (NullableOption, "password", "doreen",
            "Database user password."),
        (NullableOption, "read_default_file", "~/.my.cnf",
            "MySQL only: name of the MySQL defaults file."),
        (NullableOption, "read_default_group", "doreen",
            "MySQL only: group to read in the MySQL defaults file."),
        (IntegerNumberOption, "sqlite_timeout", "30",
            "SQLite only: seconds to wait for a locked database."),
        (IsolationOption, "isolation_level", "read committed",
            "Transaction isolation level (PostgreSQL and MySQL)."),
        (BooleanOption, "serverside_cursor", "yes",
            "PostgreSQL only: read long ID lists through a server-side\n"
            "cursor instead of loading them into the client at once."),
    ), "Settings of the relational store"),
    ("search", (
        (PositiveIntegerNumberOption, "page_size", "20",
            "Number of tickets on one page of search results."),
        (PositiveIntegerNumberOption, "min_query_length", "3",
            "Fulltext queries shorter than this are rejected."),
        (IntegerListOption, "drilldown_fields", "-9,-12,-3",
            "Field IDs for which search results are broken down into\n"
            "per-value counts (drill-down filters). Ticket types are\n"
            "always broken down. The default is status, assignee and\n"
            "project."),
        (WordListOption, "stopwords", "",
            "Additional stop-words for fulltext queries. These words\n"
            "are never matched and never highlighted."),
    ), "Search result settings"),
    ("logging", (
        (FilePathOption, "config", "",
            "Path to a logging.config file. When set, 'filename' and\n"
            "'level' are ignored."),
        (FilePathOption, "filename", "",
            "Log file. Messages go to stderr when this is empty."),
        (Option, "level", "ERROR",
            "Lowest level of messages logged.\n"
            "Allowed values: DEBUG, INFO, WARNING, ERROR"),
    )),
)

### Configuration objects

class Config:
    """Options of a config.ini layout, by canonical name.

    HOME is a pseudo-option: the directory config.ini was loaded from.
    """

    INI_FILE = "config.ini"

    def __init__(self, config_path=None, layout=None, settings=None):
        """Build the options of 'layout', load 'config_path' (a directory
        or a file) if given, then apply the 'settings' overrides, a dict
        of option name to value.
        """
        self.__dict__.update(HOME=".", filepath=None, sections=[],
            section_descriptions={}, options={})
        for section in layout or ():
            self.add_section(*section)
        if config_path is not None:
            self.load(config_path)
        for name, value in (settings or {}).items():
            self[name.upper()] = value

    def add_section(self, section, options, description=None):
        if section not in self.sections:
            self.sections.append(section)
        if description or section not in self.section_descriptions:
            self.section_descriptions[section] = description
        for definition in options:
            option_class = definition[0]
            self.add_option(option_class(self, section, *definition[1:]))

    def add_option(self, option):
        if option.section not in self.sections:
            self.sections.append(option.section)
        self.options[option.name] = option

    def _get_option(self, name):
        try:
            return self.options[name]
        except KeyError:
            raise InvalidOptionError(name)

    def items(self):
        """All Option objects in config.ini order."""
        return [o for section in self.sections
            for o in self.options.values() if o.section == section]

    def keys(self):
        return ["HOME"] + [o.name for o in self.items()]

    def reset(self):
        for option in self.items():
            option.reset()

    def _get_name(self):
        return ""

    # files

    def load_ini(self, config_path, defaults=None):
        ''' Reset every option, then set those present in the config.ini
            at 'config_path' (a directory or the file itself). A missing
            file leaves the defaults.
        '''
        if os.path.isdir(config_path):
            home = config_path
            config_path = os.path.join(config_path, self.INI_FILE)
        else:
            home = os.path.dirname(config_path)
        parser_defaults = {"HOME": home}
        parser_defaults.update(defaults or {})
        parser = configparser.ConfigParser(parser_defaults)
        parser.read([config_path])
        self.HOME = home
        self.filepath = config_path
        self.reset()
        for option in self.items():
            option.load_ini(parser)

    def load(self, config_path):
        self.load_ini(config_path)

    def save(self, ini_file=None):
        ''' Write all options to 'ini_file' (default: the file loaded
            from). An existing file is kept as '<name>.bak'.
        '''
        if ini_file is None:
            ini_file = self.filepath or os.path.join(self.HOME,
                self.INI_FILE)
        base = os.path.splitext(ini_file)[0]
        tmp_file = base + ".tmp"
        bak_file = base + ".bak"
        unset = [o for o in self.items() if not o.isset()]
        with open(tmp_file, "w") as f:
            f.write("# %s configuration file\n" % self._get_name())
            f.write("# Written %s\n" % time.asctime())
            if unset:
                f.write("\n# These options have no value yet: %s\n"
                    % ", ".join([o.name for o in unset]))
            for section in self.sections:
                f.write("\n")
                comment = self.section_descriptions.get(section)
                if comment:
                    f.write("".join(["# %s\n" % line
                        for line in comment.split("\n")]))
                f.write("[%s]\n" % section)
                for option in self.items():
                    if option.section == section:
                        f.write("\n" + option.format())
        if os.path.exists(ini_file):
            if os.path.exists(bak_file):
                os.remove(bak_file)
            os.rename(ini_file, bak_file)
        os.rename(tmp_file, ini_file)

    # item and attribute access by canonical option name

    def __len__(self):
        return len(self.options)

    def __getitem__(self, name):
        if name == "HOME":
            return self.HOME
        return self._get_option(name).get()

    def __setitem__(self, name, value):
        if name == "HOME":
            self.__dict__["HOME"] = value
        else:
            self._get_option(name).set(value)

    def __getattr__(self, name):
        # only called for names that aren't instance attributes
        if name.startswith("__") or "options" not in self.__dict__:
            raise AttributeError(name)
        return self[name]

    def __setattr__(self, name, value):
        if name in self.__dict__:
            self.__dict__[name] = value
        else:
            self._get_option(name).set(value)

class CoreConfig(Config):
    """The configuration of a Doreen tracker (the SETTINGS layout).

    The 'doreen' logger is set up from the [logging] section whenever
    the configuration is created or loaded.
    """

    def __init__(self, home_dir=None, settings=None):
        Config.__init__(self, home_dir, SETTINGS, settings)
        self.init_logging()

    def _get_name(self):
        return "Doreen"

    def load(self, home_dir):
        """Load home_dir/config.ini; raises NoConfigError if it's missing."""
        if not os.path.isfile(os.path.join(home_dir, self.INI_FILE)):
            raise NoConfigError(home_dir)
        self.load_ini(home_dir, {"DOREEN_HOME": home_dir})
        self.init_logging()

    def init_logging(self):
        ''' Install one handler on the 'doreen' logger, or hand over to
            logging.config when LOGGING_CONFIG names a file.
        '''
        config_file = self.LOGGING_CONFIG
        if config_file and os.path.isfile(config_file):
            logging.config.fileConfig(config_file)
            return
        logger = logging.getLogger("doreen")
        if self.LOGGING_FILENAME:
            handler = logging.FileHandler(self.LOGGING_FILENAME)
        else:
            handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(message)s"))
        for old in logger.handlers:
            old.close()
        logger.handlers = [handler]
        logger.setLevel((self.LOGGING_LEVEL or "ERROR").upper())

# vim: set et sts=4 sw=4 :
