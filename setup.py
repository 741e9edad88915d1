from setuptools import setup, find_packages

# Read dependencies from requirements.txt
with open("requirements.txt") as f:
    install_requires = [line.strip() for line in f if line.strip() and not line.startswith("#")]

# Read version from version.txt
with open("version.txt") as f:
    version = f.read().strip()

setup(
    name="sparkctl",
    version=version,
    packages=["sparkctl"] + ["sparkctl." + pkg for pkg in find_packages(where="sparkctl")],
    package_dir={"sparkctl": "sparkctl"},
    install_requires=install_requires,
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "sparkctl=sparkctl.main:main",
        ],
    },
    include_package_data=True,
    package_data={
        "sparkctl.input": ["config_file/*"],
        "sparkctl.input.templates": ["*.template"],
    },
    description="SGLang multi-node cluster launcher and benchmark runner for DGX Spark",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Intended Audience :: Developers",
        "Topic :: System :: Clustering",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
    ],
    python_requires=">=3.9",
)
