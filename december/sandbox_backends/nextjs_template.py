from __future__ import annotations

import json
from pathlib import Path

PROJECT_DIRECTORIES = ("src/app", "src/components", "src/lib", "public")

_PACKAGE_JSON = {
    "name": "december-nextjs-app",
    "version": "0.1.0",
    "private": True,
    "scripts": {
        "dev": "next dev",
        "build": "next build",
        "start": "next start",
        "lint": "next lint",
    },
    "dependencies": {
        "next": "15.3.3",
        "react": "^19.0.0",
        "react-dom": "^19.0.0",
        "lucide-react": "^0.513.0",
    },
    "devDependencies": {
        "@tailwindcss/postcss": "^4",
        "@types/node": "^20",
        "@types/react": "^19",
        "@types/react-dom": "^19",
        "tailwindcss": "^4",
        "typescript": "^5",
    },
}

_TSCONFIG = {
    "compilerOptions": {
        "target": "ES2017",
        "lib": ["dom", "dom.iterable", "esnext"],
        "allowJs": True,
        "skipLibCheck": True,
        "strict": True,
        "noEmit": True,
        "esModuleInterop": True,
        "module": "esnext",
        "moduleResolution": "bundler",
        "resolveJsonModule": True,
        "isolatedModules": True,
        "jsx": "preserve",
        "incremental": True,
        "plugins": [{"name": "next"}],
        "paths": {"@/*": ["./src/*"]},
    },
    "include": ["next-env.d.ts", "**/*.ts", "**/*.tsx", ".next/types/**/*.ts"],
    "exclude": ["node_modules"],
}

_NEXT_CONFIG = """import type { NextConfig } from "next";

const nextConfig: NextConfig = {};

export default nextConfig;
"""

_TAILWIND_CONFIG = """import type { Config } from "tailwindcss";

const config: Config = {
  content: [
    "./src/pages/**/*.{js,ts,jsx,tsx,mdx}",
    "./src/components/**/*.{js,ts,jsx,tsx,mdx}",
    "./src/app/**/*.{js,ts,jsx,tsx,mdx}",
  ],
  theme: {
    extend: {
      colors: {
        background: "var(--background)",
        foreground: "var(--foreground)",
      },
    },
  },
  plugins: [],
};
export default config;
"""

_POSTCSS_CONFIG = """const config = {
  plugins: ["@tailwindcss/postcss"],
};

export default config;
"""

_LAYOUT_TSX = """import type { Metadata } from "next";
import { Geist, Geist_Mono } from "next/font/google";
import "./globals.css";

const geistSans = Geist({
  variable: "--font-geist-sans",
  subsets: ["latin"],
});

const geistMono = Geist_Mono({
  variable: "--font-geist-mono",
  subsets: ["latin"],
});

export const metadata: Metadata = {
  title: "December Next.js App",
  description: "Created with December AI",
};

export default function RootLayout({
  children,
}: Readonly<{
  children: React.ReactNode;
}>) {
  return (
    <html lang="en">
      <body className={`${geistSans.variable} ${geistMono.variable} antialiased`}>
        {children}
      </body>
    </html>
  );
}
"""

_PAGE_TSX = """import { Code, Terminal, Zap } from "lucide-react";

const features = [
  {
    icon: Code,
    title: "Real-time Editing",
    body: "Edit your code in the browser and see changes instantly in the preview.",
  },
  {
    icon: Terminal,
    title: "Integrated Terminal",
    body: "Run commands, install packages and manage your project from the built-in terminal.",
  },
  {
    icon: Zap,
    title: "AI-Powered",
    body: "Ask the assistant to build features and fix bugs for you.",
  },
];

export default function Home() {
  return (
    <main className="min-h-screen bg-gradient-to-br from-gray-900 via-black to-gray-900 text-white">
      <div className="container mx-auto px-4 py-16">
        <div className="text-center mb-16">
          <h1 className="text-6xl font-bold bg-gradient-to-r from-blue-400 via-purple-500 to-pink-500 bg-clip-text text-transparent mb-8">
            December
          </h1>
          <p className="text-xl text-gray-300 max-w-2xl mx-auto">
            Your AI-powered development environment is ready.
          </p>
        </div>
        <div className="grid md:grid-cols-3 gap-8">
          {features.map(({ icon: Icon, title, body }) => (
            <div
              key={title}
              className="bg-gray-800/50 rounded-xl p-6 border border-gray-700/50"
            >
              <Icon className="w-6 h-6 text-blue-400 mb-4" />
              <h3 className="text-xl font-semibold mb-2">{title}</h3>
              <p className="text-gray-400">{body}</p>
            </div>
          ))}
        </div>
      </div>
    </main>
  );
}
"""

_GLOBALS_CSS = """@import "tailwindcss";

:root {
  --background: #0a0a0a;
  --foreground: #ededed;
}

body {
  color: var(--foreground);
  background: var(--background);
  font-family: Arial, Helvetica, sans-serif;
}
"""

_README = """# December Next.js Project

This is a [Next.js](https://nextjs.org) project created with December AI.

## Getting Started

The development server is already running. You can:

1. **Edit the code** in the editor
2. **Chat with the assistant** to build features
3. **Watch the preview** update as files change

## Learn More

- [Next.js Documentation](https://nextjs.org/docs)
- [Learn Next.js](https://nextjs.org/learn)
"""


def default_nextjs_files() -> dict[str, str]:
    """Project-relative path -> file content for a fresh environment."""
    return {
        "package.json": json.dumps(_PACKAGE_JSON, indent=2) + "\n",
        "next.config.ts": _NEXT_CONFIG,
        "tsconfig.json": json.dumps(_TSCONFIG, indent=2) + "\n",
        "tailwind.config.ts": _TAILWIND_CONFIG,
        "postcss.config.mjs": _POSTCSS_CONFIG,
        "src/app/layout.tsx": _LAYOUT_TSX,
        "src/app/page.tsx": _PAGE_TSX,
        "src/app/globals.css": _GLOBALS_CSS,
        "README.md": _README,
    }


def write_nextjs_project(project_dir: Path) -> None:
    for rel in PROJECT_DIRECTORIES:
        (project_dir / rel).mkdir(parents=True, exist_ok=True)
    for rel, content in default_nextjs_files().items():
        target = project_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
