# Copyright (c) 2025 Efstratios Goudelis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.


import logging
import logging.config

import yaml

from .arguments import arguments


def get_logger_config(args):
    """
    Load the logging configuration named by args.log_config.

    :param args: Parsed arguments with the path of the YAML logging configuration.
    :type args: argparse.Namespace
    :return: dictConfig compatible dictionary
    :rtype: dict
    :raises FileNotFoundError: If the configuration file does not exist.
    :raises yaml.YAMLError: If the file is not valid YAML.
    """
    with open(args.log_config, "r") as file:
        return yaml.safe_load(file)


def get_logger(args):
    """
    Configure logging from the YAML file and return the "sensor-station" logger,
    set to args.log_level.
    """
    logging.config.dictConfig(get_logger_config(args))

    log = logging.getLogger("sensor-station")
    log.setLevel(args.log_level)

    return log


# setup a logger
logger = get_logger(arguments)
