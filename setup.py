from setuptools import setup, find_packages


setup(
    name="ssh-tgzx",
    version="0.1",
    packages=find_packages(include=["tgzx", "tgzx.*"]),
    description="Encrypted tar.gz archives for the SSH keys a user publishes.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.21.0",
        "pynacl>=1.5",
        "requests>=2.31",
    ],
    extras_require={
        "test": ["pytest>=7", "pyrage>=1.1"],
    },
    entry_points={
        "console_scripts": [
            "ssh-tgzx=tgzx.cli:main",
        ]
    },
)
