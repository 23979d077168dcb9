from setuptools import setup, find_packages

setup(
    name="dora-teach-repeat",
    version="0.1.0",
    packages=find_packages(include=["dora_teach_repeat", "dora_teach_repeat.*"]),
    install_requires=[
        "dora-rs",
        "numpy",
        "pyarrow",
        "scipy",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "dora-teach-repeat=dora_teach_repeat.main:main",
        ],
    },
    author="Dora",
    description="Teach & repeat node replaying a recorded trajectory with lidar drift correction",
    python_requires=">=3.8",
)
