"""
Common utilities for MongoDB access
"""

import logging
import os
from typing import Dict, List, Union
from dotenv import load_dotenv
from pymongo import MongoClient

from pnsindex.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


# Deployment records are kept in the "pns" database.
_DB_NAME = "pns"
_ADDRESSES_COLLECTION = "addresses"


class MongoUtils:
    """
    PNS MongoDB client wrapper
    Resolves deployed contract addresses recorded by the deployment tooling.
    """

    def __init__(
        self,
        dotenv_path: Union[str, None] = None,
        mongo_client: Union[MongoClient, None] = None,
    ):
        """
        Initialize a client object.

        :param dotenv_path: Absolute or relative path to .env file.
        :param mongo_client: An existing client, if any.
            If omitted, a client is created from the MONGODB_URL variable.
        """
        if mongo_client is not None:
            self.mongo_client = mongo_client
            return
        # Load .env file if it exists.
        load_dotenv(dotenv_path, verbose=True, override=True)
        self.mongodb_url = os.getenv("MONGODB_URL")
        if self.mongodb_url is None:
            raise EnvironmentError("Missing required environment variable MONGODB_URL")
        _LOG.info("Using MongoDB URL: %s", self.mongodb_url)
        self.mongo_client = MongoClient(self.mongodb_url)

    def get_contract_address(self, network: str, contract_name: str) -> str:
        """
        Get a deployed contract address from MongoDB.

        :param network: The contract network name.
        :param contract_name: The contract class name.
        :return: The contract address.
        """
        docs = list(
            self.mongo_client.get_database(_DB_NAME)
            .get_collection(_ADDRESSES_COLLECTION)
            .find({"network": network, "name": contract_name})
        )
        if len(docs) != 1:
            raise LookupError(
                f"Expected one {contract_name} deployment on {network}, found {len(docs)}"
            )
        addr = docs[0]["address"]
        _LOG.info("Using %s at address: %s", contract_name, addr)
        return addr

    def get_contract_addresses(
        self, network: str, contract_names: List[str]
    ) -> Dict[str, str]:
        """
        Get the addresses of several deployed contracts.

        :param network: The contract network name.
        :param contract_names: The contract class names.
        :return: The dictionary of contract name to address.
        """
        return {
            name: self.get_contract_address(network, name) for name in contract_names
        }
