import os

import yaml

CONFIG_ENV_VAR = "SQUADRON_CONFIG"


class ConfigLoader:
    """Lecteur YAML des réglages squadron.

    Le chemin peut être surchargé par la variable d'environnement
    ``SQUADRON_CONFIG``; un fichier absent donne une configuration vide.
    """

    def __init__(self, config_file="settings.yaml"):
        self.path = os.environ.get(CONFIG_ENV_VAR, config_file)
        self.config = {}
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as f:
                self.config = yaml.safe_load(f) or {}

    def get(self, *keys, default=None):
        """
        Récupère une valeur dans la configuration.
        Si un chemin de clé n'existe pas :
          - lève une KeyError si aucun default n'est fourni
          - retourne le default sinon
        """
        ref = self.config
        for key in keys:
            if isinstance(ref, dict) and key in ref:
                ref = ref[key]
            elif default is not None:
                return default
            else:
                raise KeyError(f"Configuration key {' -> '.join(keys)} not found and no default provided.")
        return ref
